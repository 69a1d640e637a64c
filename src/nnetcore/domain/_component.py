"""
Component (layer) interface definitions.

This module defines the domain-level contracts through which the `Nnet`
engine drives its processing stages. Contracts are expressed with
`typing.Protocol` so any object implementing the required methods is a valid
component, independent of inheritance.

The engine never downcasts. Instead, optional behavior is discovered through
small capability protocols that only the relevant variants implement:

- `IUpdatableComponent`: trainable parameters and an in-place `update`
- `IFlatParameterAccess`: restore a flat parameter vector, read the gradient
- `IRetentionControl`: dropout retention probability
- `IStreamResettable`: reset carried recurrent state per stream
- `ISequenceLengthAware`: per-stream sequence lengths
- `INestedNnetInfo`: buffer statistics of nested networks

All protocols are `@runtime_checkable`, so capability probing is a plain
`isinstance` check.
"""

from __future__ import annotations

from typing import Any, BinaryIO, Optional, Protocol, Sequence, runtime_checkable

from ._component_type import ComponentType
from ._train_options import NnetTrainOptions
from .types._matrix import MatrixLike


@runtime_checkable
class IComponent(Protocol):
    """
    Domain-level component interface.

    A component is one processing stage with fixed input and output widths.
    Widths never change during the component's lifetime; a structural change
    is expressed by replacing the component.

    Notes
    -----
    - `backpropagate` must be called with the same ``(x, y)`` pair that
      `propagate` consumed and produced; components may rely on internal
      state recorded during that forward pass.
    """

    @property
    def input_dim(self) -> int:
        """Width of the input matrix (number of columns)."""
        ...

    @property
    def output_dim(self) -> int:
        """Width of the output matrix (number of columns)."""
        ...

    @property
    def component_type(self) -> ComponentType:
        """Variant tag of this component."""
        ...

    @property
    def is_updatable(self) -> bool:
        """Whether this component exposes trainable parameters."""
        ...

    def propagate(self, x: MatrixLike) -> MatrixLike:
        """
        Compute the output of shape ``(x.rows, output_dim)``.
        """
        ...

    def backpropagate(
        self, x: MatrixLike, y: MatrixLike, dy: MatrixLike
    ) -> MatrixLike:
        """
        Compute the gradient with respect to the input, of shape
        ``(x.rows, input_dim)``.
        """
        ...

    def copy(self) -> "IComponent":
        """Return a deep clone."""
        ...

    def write(self, stream: BinaryIO, binary: bool) -> None:
        """Serialize this component (marker, widths, then its data)."""
        ...

    def info(self) -> str:
        """Free-form diagnostic text about the parameters."""
        ...

    def info_gradient(self) -> str:
        """Free-form diagnostic text about the accumulated gradients."""
        ...


@runtime_checkable
class IUpdatableComponent(IComponent, Protocol):
    """
    Component with trainable parameters.

    The flattened parameter vector of a component is the concatenation of
    its parameter arrays in a fixed, component-defined order (for the affine
    transform: row-major weight matrix, then bias).
    """

    @property
    def num_params(self) -> int:
        """Length of the flattened parameter vector."""
        ...

    def get_params(self) -> MatrixLike:
        """Return a copy of the flattened parameter vector."""
        ...

    def update(self, x: MatrixLike, dy: MatrixLike) -> None:
        """
        Update parameters in place from the layer's forward input and its
        output gradient.
        """
        ...

    def set_train_options(self, opts: NnetTrainOptions) -> None:
        """Adopt the network-wide training options."""
        ...


@runtime_checkable
class IFlatParameterAccess(Protocol):
    """
    Capability: restore parameters from, and export gradients as, flat
    vectors laid out exactly like `get_params`.
    """

    def set_params(self, params: MatrixLike) -> None: ...

    def get_gradient(self) -> MatrixLike: ...


@runtime_checkable
class IRetentionControl(Protocol):
    """Capability: dropout retention probability."""

    def get_dropout_retention(self) -> float: ...

    def set_dropout_retention(self, retention: float) -> None: ...


@runtime_checkable
class IStreamResettable(Protocol):
    """Capability: zero the carried recurrent state of flagged streams."""

    def reset_streams(self, stream_reset_flag: Sequence[int]) -> None: ...


@runtime_checkable
class ISequenceLengthAware(Protocol):
    """Capability: accept per-stream sequence lengths."""

    def set_seq_lengths(self, sequence_lengths: Sequence[int]) -> None: ...


@runtime_checkable
class INestedNnetInfo(Protocol):
    """Capability: report buffer statistics of nested networks."""

    def info_propagate(self) -> str: ...

    def info_backpropagate(self) -> str: ...


def describe(component: Any, index: Optional[int] = None) -> str:
    """
    Return a short ``"<Marker> in->out"`` description for error messages.
    """
    prefix = f"[{index}] " if index is not None else ""
    return (
        f"{prefix}{component.component_type.marker} "
        f"{component.input_dim}->{component.output_dim}"
    )
