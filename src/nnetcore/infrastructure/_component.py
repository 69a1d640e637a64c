"""
Infrastructure component base classes.

This module provides concrete `Component` and `UpdatableComponent` bases
that satisfy the domain-level `IComponent` / `IUpdatableComponent`
protocols. They implement the conveniences every concrete layer needs:

- fixed input/output widths with validation at construction time
- width validation around `propagate` / `backpropagate`, delegating the
  math to `_propagate` / `_backpropagate`
- serialization framing (marker, output width, input width, then
  `_write_data`) and the `_read_data` / `_init_data` hooks used by the
  component factory
- deep-copy cloning via `copy()`

Concrete layers live in `nnetcore.infrastructure.components` and register
themselves with the component factory via `register_component`.
"""

from __future__ import annotations

import copy as _copy
from typing import BinaryIO, ClassVar

import numpy as np

from ..domain._component import IComponent, IUpdatableComponent
from ..domain._component_type import ComponentType
from ..domain._errors import DimensionMismatchError, ParameterCountError
from ..domain._train_options import NnetTrainOptions
from .io._token_io import write_int, write_token


def as_matrix(x: np.ndarray, *, what: str = "input") -> np.ndarray:
    """
    Return `x` as a 2-D float32 array, copying only when needed.

    Raises
    ------
    ValueError
        If `x` is not 2-dimensional.
    """
    arr = np.asarray(x, dtype=np.float32)
    if arr.ndim != 2:
        raise ValueError(f"Expected 2D {what} (rows, cols), got shape {arr.shape}")
    return arr


class Component(IComponent):
    """
    Base class for all processing stages.

    Subclasses set the class attribute `TYPE` and implement `_propagate` and
    `_backpropagate`. Components that persist additional data override
    `_write_data` / `_read_data`; components that accept prototype options
    override `_init_data`.

    Parameters
    ----------
    input_dim : int
        Number of input columns. Must be positive.
    output_dim : int
        Number of output columns. Must be positive.
    """

    TYPE: ClassVar[ComponentType]

    def __init__(self, input_dim: int, output_dim: int) -> None:
        if int(input_dim) <= 0 or int(output_dim) <= 0:
            raise ValueError(
                f"{self.__class__.__name__} dims must be positive, "
                f"got input_dim={input_dim}, output_dim={output_dim}"
            )
        self._input_dim = int(input_dim)
        self._output_dim = int(output_dim)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @property
    def input_dim(self) -> int:
        return self._input_dim

    @property
    def output_dim(self) -> int:
        return self._output_dim

    @property
    def component_type(self) -> ComponentType:
        return self.TYPE

    @property
    def marker(self) -> str:
        """Stable marker string of this variant, e.g. ``<Sigmoid>``."""
        return self.TYPE.marker

    @property
    def is_updatable(self) -> bool:
        return False

    def propagate(self, x: np.ndarray) -> np.ndarray:
        """
        Validate `x` and compute the output of shape ``(rows, output_dim)``.

        Raises
        ------
        DimensionMismatchError
            If ``x.shape[1] != input_dim``.
        ValueError
            If the computed output does not have shape ``(rows, output_dim)``.
        """
        x = as_matrix(x)
        if x.shape[1] != self._input_dim:
            raise DimensionMismatchError(
                x.shape[1], self._input_dim, what=f"{self.marker} propagate:"
            )
        y = self._propagate(x)
        if y.shape != (x.shape[0], self._output_dim):
            raise ValueError(
                f"{self.marker} produced {y.shape}, "
                f"expected {(x.shape[0], self._output_dim)}"
            )
        return y

    def backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        """
        Validate shapes and compute the input gradient.

        Parameters
        ----------
        x : np.ndarray
            Forward input used by the matching `propagate` call.
        y : np.ndarray
            Forward output produced by that call.
        dy : np.ndarray
            Gradient with respect to `y`.

        Returns
        -------
        np.ndarray
            Gradient with respect to `x`, shape ``(rows, input_dim)``.

        Raises
        ------
        DimensionMismatchError
            If `x` or `dy` widths disagree with the component.
        ValueError
            If `dy` and `y` shapes differ.
        """
        x = as_matrix(x)
        dy = as_matrix(dy, what="output gradient")
        if x.shape[1] != self._input_dim:
            raise DimensionMismatchError(
                x.shape[1], self._input_dim, what=f"{self.marker} backpropagate:"
            )
        if dy.shape[1] != self._output_dim:
            raise DimensionMismatchError(
                dy.shape[1], self._output_dim, what=f"{self.marker} backpropagate:"
            )
        if tuple(np.shape(y)) != tuple(dy.shape):
            raise ValueError(
                f"{self.marker} backpropagate: output {np.shape(y)} "
                f"vs output gradient {dy.shape}"
            )
        return self._backpropagate(x, y, dy)

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def copy(self) -> "Component":
        return _copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def write(self, stream: BinaryIO, binary: bool) -> None:
        write_token(stream, binary, self.marker)
        write_int(stream, binary, self._output_dim)
        write_int(stream, binary, self._input_dim)
        if not binary:
            stream.write(b"\n")
        self._write_data(stream, binary)

    def _write_data(self, stream: BinaryIO, binary: bool) -> None:
        """Write component-specific data. Stateless components write nothing."""

    def _read_data(self, stream: BinaryIO, binary: bool) -> None:
        """Read component-specific data written by `_write_data`."""

    def _init_data(self, stream: BinaryIO) -> None:
        """
        Consume prototype options (text encoding) following the widths.

        Stateless components accept no options; anything left on the line is
        reported by the factory.
        """

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def info(self) -> str:
        return ""

    def info_gradient(self) -> str:
        return ""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(input_dim={self._input_dim}, output_dim={self._output_dim})"


class UpdatableComponent(Component, IUpdatableComponent):
    """
    Base class for components with trainable parameters.

    Subclasses implement `_param_arrays` (the parameter arrays in flattening
    order) and `_gradient_arrays` (the matching accumulated gradients), and
    `update`. Flattening, restoring and counting are derived from those two
    lists, so the layout of `get_params`, `set_params` and `get_gradient`
    always agrees.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        self.opts = NnetTrainOptions()

    @property
    def is_updatable(self) -> bool:
        return True

    def set_train_options(self, opts: NnetTrainOptions) -> None:
        self.opts = _copy.copy(opts)

    def _param_arrays(self) -> list[np.ndarray]:
        raise NotImplementedError

    def _gradient_arrays(self) -> list[np.ndarray]:
        raise NotImplementedError

    @property
    def num_params(self) -> int:
        return int(sum(a.size for a in self._param_arrays()))

    def get_params(self) -> np.ndarray:
        arrays = self._param_arrays()
        if not arrays:
            return np.zeros((0,), dtype=np.float32)
        return np.concatenate([a.reshape(-1) for a in arrays]).astype(np.float32)

    def set_params(self, params: np.ndarray) -> None:
        """
        Restore parameters from a flat vector laid out like `get_params`.

        Raises
        ------
        ParameterCountError
            If the vector length differs from `num_params`.
        """
        vec = np.asarray(params, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self.num_params:
            raise ParameterCountError(vec.shape[0], self.num_params, what=self.marker)
        pos = 0
        for a in self._param_arrays():
            a[...] = vec[pos : pos + a.size].reshape(a.shape)
            pos += a.size

    def get_gradient(self) -> np.ndarray:
        arrays = self._gradient_arrays()
        if not arrays:
            return np.zeros((0,), dtype=np.float32)
        return np.concatenate([a.reshape(-1) for a in arrays]).astype(np.float32)

    def update(self, x: np.ndarray, dy: np.ndarray) -> None:
        raise NotImplementedError
