"""
Feed-forward network engine.

`Nnet` owns an ordered chain of components together with two buffer
chains of ``num_components() + 1`` slots each:

- the propagate chain: slot 0 holds the network input, slot ``i + 1`` the
  output of component ``i``
- the backpropagate chain: slot ``N`` holds the output-side gradient, slot
  ``i`` the gradient with respect to the input of component ``i``

It implements the two execution strategies (`propagate`, which retains all
intermediates for a following `backpropagate`, and `feedforward`, which
keeps at most two intermediates alive), backpropagation interleaved with
per-layer parameter updates, structural mutation guarded by `check`,
flattened parameter access, prototype-driven construction, persistence and
diagnostics.

Ownership
---------
Components handed to the engine (`append_component`, `set_component`, ...)
are owned by it from then on; callers must not keep using them. Copies of a
network (`copy`, `copy.copy`, `copy.deepcopy`) clone every component, so
two networks never share mutable state.

Failure model
-------------
Every structural or numerical violation raises a subclass of `NnetError`
immediately. Mutations are not rolled back: a failed `append_component`
leaves the offending component in place.
"""

from __future__ import annotations

import copy as _copy
import dataclasses
import logging
import os
from pathlib import Path
from typing import (
    Any,
    BinaryIO,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    TextIO,
    Tuple,
    Union,
)

import numpy as np
from typing_extensions import Self

from ...domain._component import (
    IComponent,
    IFlatParameterAccess,
    INestedNnetInfo,
    IRetentionControl,
    ISequenceLengthAware,
    IStreamResettable,
    describe,
)
from ...domain._errors import (
    BufferChainError,
    DimensionMismatchError,
    NnetError,
    ParameterCountError,
    ParameterExplosionError,
    UnimplementedParameterAccessError,
)
from ...domain._train_options import NnetTrainOptions
from .._component import as_matrix
from .. import components as _components  # noqa: F401  (registers every variant)
from ..components._registry import init_component, read_component
from ..io._token_io import BINARY_HEADER, write_token
from ..utils._moment_statistics import moment_statistics

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

_PROTO_WRAPPER_TOKENS = ("<NnetProto>", "</NnetProto>")


def _empty_buffer() -> np.ndarray:
    return np.zeros((0, 0), dtype=np.float32)


class Nnet:
    """
    Ordered chain of components with buffer-chain execution.

    Parameters
    ----------
    components : Iterable[IComponent], optional
        Components to append, in order. The network takes ownership.
    train_options : Optional[NnetTrainOptions], optional
        Training options; defaults to `NnetTrainOptions()`. They are pushed
        to every updatable component.

    Examples
    --------
    nnet = Nnet([AffineTransform(10, 5), Sigmoid(5, 5)])
    y = nnet.propagate(x)           # (rows, 5), keeps all intermediates
    dx = nnet.backpropagate(dy)     # (rows, 10), updates the affine layer
    """

    def __init__(
        self,
        components: Iterable[IComponent] = (),
        *,
        train_options: Optional[NnetTrainOptions] = None,
    ) -> None:
        self._components: List[IComponent] = []
        self._propagate_buf: List[np.ndarray] = []
        self._backpropagate_buf: List[np.ndarray] = []
        self._opts = NnetTrainOptions()
        self._resize_buffers()

        for comp in components:
            self.append_component(comp)
        self.set_train_options(train_options if train_options is not None else self._opts)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_nnet(cls, other: "Nnet") -> Self:
        """
        Deep-copy `other`: every component is cloned, buffers start empty,
        training options are copied.
        """
        nnet = cls()
        for comp in other._components:
            nnet._components.append(comp.copy())
        nnet._resize_buffers()
        nnet.set_train_options(other._opts)
        nnet.check()
        return nnet

    @classmethod
    def from_proto(cls, source: Union[PathLike, TextIO, Iterable[str]]) -> Self:
        """Build a freshly initialized network from a prototype."""
        nnet = cls()
        nnet.init(source)
        return nnet

    @classmethod
    def from_file(cls, path: PathLike) -> Self:
        """Load a persisted network (text or binary) from `path`."""
        nnet = cls()
        nnet.read_file(path)
        return nnet

    def copy(self) -> Self:
        return type(self).from_nnet(self)

    def __copy__(self) -> Self:
        # shallow copies would alias components; always clone
        return type(self).from_nnet(self)

    def __deepcopy__(self, memo: dict) -> Self:
        return type(self).from_nnet(self)

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------
    def _resize_buffers(self) -> None:
        n = len(self._components) + 1
        for buf in (self._propagate_buf, self._backpropagate_buf):
            del buf[n:]
            while len(buf) < n:
                buf.append(_empty_buffer())

    def propagate_buffer(self, index: int) -> np.ndarray:
        """
        Return a copy of propagate-chain slot `index` (slot 0 is the input).
        """
        return self._propagate_buf[index].copy()

    def backpropagate_buffer(self, index: int) -> np.ndarray:
        """
        Return a copy of backpropagate-chain slot `index` (slot 0 is the
        gradient with respect to the network input).
        """
        return self._backpropagate_buf[index].copy()

    def buffer_shapes(self) -> Tuple[Tuple[Tuple[int, ...], ...], Tuple[Tuple[int, ...], ...]]:
        """
        Return the shapes of both chains as ``(propagate, backpropagate)``.
        """
        return (
            tuple(b.shape for b in self._propagate_buf),
            tuple(b.shape for b in self._backpropagate_buf),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def propagate(self, x: np.ndarray) -> np.ndarray:
        """
        Forward pass retaining every intermediate activation.

        Parameters
        ----------
        x : np.ndarray
            Input of shape ``(rows, input_dim())``.

        Returns
        -------
        np.ndarray
            Network output of shape ``(rows, output_dim())``. For an empty
            network this is a copy of `x`.

        Raises
        ------
        BufferChainError
            If the propagate chain has fewer than ``N + 1`` slots.
        DimensionMismatchError
            If `x` does not have ``input_dim()`` columns.
        """
        x = as_matrix(x)
        n = len(self._components)
        if n == 0:
            return x.copy()

        if len(self._propagate_buf) < n + 1:
            raise BufferChainError("propagate", len(self._propagate_buf), n + 1)

        self._propagate_buf[0] = x.copy()
        for i, comp in enumerate(self._components):
            self._propagate_buf[i + 1] = comp.propagate(self._propagate_buf[i])

        return self._propagate_buf[n].copy()

    def backpropagate(
        self, out_diff: np.ndarray, *, export_input_diff: bool = True
    ) -> Optional[np.ndarray]:
        """
        Backward pass with interleaved parameter updates.

        Layers are visited from last to first. Right after layer ``i``
        computes its input gradient, an updatable layer ``i`` is updated
        from its own forward input and output gradient, so by the time the
        sweep reaches layer ``i - 1``, layer ``i`` already holds its new
        parameters.

        Parameters
        ----------
        out_diff : np.ndarray
            Gradient with respect to the network output.
        export_input_diff : bool, optional
            If False, the input gradient is not returned (it is still
            available through `backpropagate_buffer(0)`).

        Returns
        -------
        Optional[np.ndarray]
            Gradient with respect to the network input, or None.

        Raises
        ------
        BufferChainError
            If either chain length differs from ``N + 1``.
        NnetError
            If no matching `propagate` populated the forward chain.
        """
        out_diff = as_matrix(out_diff, what="output gradient")
        n = len(self._components)
        if n == 0:
            return out_diff.copy() if export_input_diff else None

        if len(self._propagate_buf) != n + 1:
            raise BufferChainError("propagate", len(self._propagate_buf), n + 1)
        if len(self._backpropagate_buf) != n + 1:
            raise BufferChainError("backpropagate", len(self._backpropagate_buf), n + 1)
        widths = [self._components[0].input_dim] + [c.output_dim for c in self._components]
        if any(b.shape[1] != w for b, w in zip(self._propagate_buf, widths)) or (
            self._propagate_buf[n].shape[0] != out_diff.shape[0]
        ):
            raise NnetError(
                "backpropagate requires a preceding propagate on a batch of "
                f"{out_diff.shape[0]} rows; forward chain shapes are "
                f"{[b.shape for b in self._propagate_buf]}"
            )

        self._backpropagate_buf[n] = out_diff.copy()
        for i in range(n - 1, -1, -1):
            comp = self._components[i]
            self._backpropagate_buf[i] = comp.backpropagate(
                self._propagate_buf[i],
                self._propagate_buf[i + 1],
                self._backpropagate_buf[i + 1],
            )
            if comp.is_updatable:
                comp.update(self._propagate_buf[i], self._backpropagate_buf[i + 1])

        if export_input_diff:
            return self._backpropagate_buf[0].copy()
        return None

    def feedforward(self, x: np.ndarray) -> np.ndarray:
        """
        Inference-only forward pass.

        Produces the same result as `propagate` while keeping at most two
        intermediate activations alive: layers alternate between propagate
        slots 0 and 1, the last layer's output is returned directly, and
        both slots are released (emptied) afterwards. Intermediates are
        therefore unavailable to a subsequent `backpropagate`.
        """
        x = as_matrix(x)
        n = len(self._components)
        if n == 0:
            return x.copy()
        if n == 1:
            return self._components[0].propagate(x)

        if len(self._propagate_buf) < 2:
            raise BufferChainError("propagate", len(self._propagate_buf), 2)

        buf = self._propagate_buf
        buf[0] = self._components[0].propagate(x)
        layer = 1
        while layer <= n - 2:
            buf[layer % 2] = self._components[layer].propagate(buf[(layer - 1) % 2])
            layer += 1
        out = self._components[layer].propagate(buf[(layer - 1) % 2])

        buf[0] = _empty_buffer()
        buf[1] = _empty_buffer()
        return out

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------
    def num_components(self) -> int:
        return len(self._components)

    def __len__(self) -> int:
        return len(self._components)

    def __iter__(self) -> Iterator[IComponent]:
        return iter(self._components)

    def __getitem__(self, index: int) -> IComponent:
        return self.get_component(index)

    def components(self) -> Tuple[IComponent, ...]:
        """Return the components in execution order."""
        return tuple(self._components)

    def input_dim(self) -> int:
        """
        Raises
        ------
        NnetError
            If the network has no components.
        """
        if not self._components:
            raise NnetError("input_dim() of a network with no components")
        return self._components[0].input_dim

    def output_dim(self) -> int:
        """
        Raises
        ------
        NnetError
            If the network has no components.
        """
        if not self._components:
            raise NnetError("output_dim() of a network with no components")
        return self._components[-1].output_dim

    def _check_index(self, index: int) -> int:
        if not isinstance(index, (int, np.integer)) or isinstance(index, bool):
            raise TypeError(f"Component index must be an int, got {type(index)}")
        if not 0 <= index < len(self._components):
            raise IndexError(
                f"Component index {index} out of range for {len(self._components)} components"
            )
        return int(index)

    @staticmethod
    def _check_component(comp: Any) -> IComponent:
        if not isinstance(comp, IComponent):
            raise TypeError(f"Expected a component, got: {type(comp)}")
        return comp

    def get_component(self, index: int) -> IComponent:
        return self._components[self._check_index(index)]

    def set_component(self, index: int, component: IComponent) -> None:
        """Replace the component at `index`, then `check`."""
        i = self._check_index(index)
        self._components[i] = self._check_component(component)
        self.check()

    def append_component(self, component: IComponent) -> None:
        """Append a component, resize both chains, then `check`."""
        self._components.append(self._check_component(component))
        self._resize_buffers()
        self.check()

    def insert_component(self, index: int, component: IComponent) -> None:
        """
        Insert a component before position `index` (``0 <= index <= N``),
        resize both chains, then `check`.
        """
        if not 0 <= index <= len(self._components):
            raise IndexError(
                f"Insert position {index} out of range for {len(self._components)} components"
            )
        self._components.insert(int(index), self._check_component(component))
        self._resize_buffers()
        self.check()

    def remove_component(self, index: int) -> None:
        """Remove the component at `index`, resize both chains, then `check`."""
        del self._components[self._check_index(index)]
        self._resize_buffers()
        self.check()

    def append_nnet(self, other: "Nnet") -> None:
        """Append deep copies of every component of `other`."""
        for comp in tuple(other._components):
            self.append_component(comp.copy())
        self._resize_buffers()
        self.check()

    def destroy(self) -> None:
        """Release every component and reset both chains to a single slot."""
        self._components.clear()
        self._propagate_buf.clear()
        self._backpropagate_buf.clear()
        self._resize_buffers()

    def check(self) -> None:
        """
        Validate buffer-chain lengths, adjacent widths and parameter sanity.

        Raises
        ------
        BufferChainError
            If a chain length differs from ``num_components() + 1``.
        DimensionMismatchError
            If ``component[i].output_dim != component[i + 1].input_dim``.
        ParameterExplosionError
            If the flattened parameters contain ``inf`` or ``nan``.
        """
        n = len(self._components)
        if len(self._propagate_buf) != n + 1:
            raise BufferChainError("propagate", len(self._propagate_buf), n + 1)
        if len(self._backpropagate_buf) != n + 1:
            raise BufferChainError("backpropagate", len(self._backpropagate_buf), n + 1)

        for i in range(n - 1):
            output_dim = self._components[i].output_dim
            next_input_dim = self._components[i + 1].input_dim
            if output_dim != next_input_dim:
                raise DimensionMismatchError(output_dim, next_input_dim, index=i + 1)

        total = float(np.sum(self.get_params(), dtype=np.float64))
        if np.isinf(total):
            raise ParameterExplosionError("inf")
        if np.isnan(total):
            raise ParameterExplosionError("nan")

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    def _updatable(self) -> Iterator[IComponent]:
        return (c for c in self._components if c.is_updatable)

    def _flat_access(self) -> Iterator[IComponent]:
        for comp in self._updatable():
            if not isinstance(comp, IFlatParameterAccess):
                raise UnimplementedParameterAccessError(comp.component_type.marker)
            yield comp

    def num_params(self) -> int:
        """Sum of the parameter counts of all updatable components."""
        return int(sum(c.num_params for c in self._updatable()))

    def _concat(self, parts: Iterable[np.ndarray], what: str) -> np.ndarray:
        expected = self.num_params()
        out = np.zeros((expected,), dtype=np.float32)
        pos = 0
        for part in parts:
            vec = np.asarray(part, dtype=np.float32).reshape(-1)
            if pos + vec.shape[0] > expected:
                raise ParameterCountError(pos + vec.shape[0], expected, what=what)
            out[pos : pos + vec.shape[0]] = vec
            pos += vec.shape[0]
        if pos != expected:
            raise ParameterCountError(pos, expected, what=what)
        return out

    def get_params(self) -> np.ndarray:
        """
        Concatenate `get_params()` of every updatable component, in order.
        """
        return self._concat((c.get_params() for c in self._updatable()), "params")

    def get_weights(self) -> np.ndarray:
        """
        Flattened weights of every updatable component, in order.

        Raises
        ------
        UnimplementedParameterAccessError
            If an updatable component cannot restore flat parameters.
        """
        return self._concat((c.get_params() for c in self._flat_access()), "weights")

    def set_weights(self, weights: np.ndarray) -> None:
        """
        Restore every updatable component from a flat vector laid out like
        `get_weights`.

        Raises
        ------
        ParameterCountError
            If ``len(weights) != num_params()``.
        UnimplementedParameterAccessError
            If an updatable component cannot restore flat parameters.
        """
        vec = np.asarray(weights, dtype=np.float32).reshape(-1)
        expected = self.num_params()
        if vec.shape[0] != expected:
            raise ParameterCountError(vec.shape[0], expected, what="weights")
        pos = 0
        for comp in self._flat_access():
            k = comp.num_params
            comp.set_params(vec[pos : pos + k])
            pos += k
        if pos != expected:
            raise ParameterCountError(pos, expected, what="weights")

    def get_gradient(self) -> np.ndarray:
        """
        Flattened accumulated gradients, laid out like `get_weights`.
        """
        return self._concat((c.get_gradient() for c in self._flat_access()), "gradient")

    # ------------------------------------------------------------------
    # Training options and runtime state broadcast
    # ------------------------------------------------------------------
    @property
    def train_options(self) -> NnetTrainOptions:
        return _copy.copy(self._opts)

    def set_train_options(self, opts: NnetTrainOptions) -> None:
        """Store `opts` and push them to every updatable component."""
        self._opts = _copy.copy(opts)
        for comp in self._updatable():
            comp.set_train_options(self._opts)

    def set_dropout_retention(self, retention: float) -> None:
        """Set the retention probability of every dropout component."""
        for i, comp in enumerate(self._components):
            if isinstance(comp, IRetentionControl):
                old = comp.get_dropout_retention()
                comp.set_dropout_retention(retention)
                logger.info(
                    "Setting dropout-retention in component %d from %g to %g",
                    i,
                    old,
                    retention,
                )

    def reset_lstm_streams(self, stream_reset_flag: Sequence[int]) -> None:
        """Reset carried recurrent state of flagged streams."""
        for comp in self._components:
            if isinstance(comp, IStreamResettable):
                comp.reset_streams(stream_reset_flag)

    def set_seq_lengths(self, sequence_lengths: Sequence[int]) -> None:
        """Set per-stream sequence lengths on sequence-aware components."""
        for comp in self._components:
            if isinstance(comp, ISequenceLengthAware):
                comp.set_seq_lengths(sequence_lengths)

    # ------------------------------------------------------------------
    # Prototype and persistence
    # ------------------------------------------------------------------
    def init(self, source: Union[PathLike, TextIO, Iterable[str]]) -> None:
        """
        Append freshly initialized components described by a prototype.

        Blank lines and the ``<NnetProto>`` / ``</NnetProto>`` wrapper lines
        are ignored; every other line describes one component.

        Parameters
        ----------
        source : PathLike | TextIO | Iterable[str]
            Prototype file path, open text stream, or iterable of lines.
        """
        if isinstance(source, (str, os.PathLike)):
            with open(source, "r", encoding="ascii") as f:
                self.init(f)
            return

        for raw in source:
            conf_line = raw.rstrip("\r\n")
            if not conf_line.strip():
                continue
            logger.debug(conf_line)
            if conf_line.split()[0] in _PROTO_WRAPPER_TOKENS:
                continue
            self.append_component(init_component(conf_line + "\n"))
        self.check()

    def read(self, stream: BinaryIO, binary: bool) -> None:
        """
        Replace the network with the one persisted in `stream`.

        Each component's input width is checked against the previous
        component's output width as soon as it is read. The learning rate of
        the training options is reset to 0.

        Raises
        ------
        DimensionMismatchError
            On the first adjacent width mismatch.
        MalformedStreamError
            If the stream is truncated or malformed.
        """
        self.destroy()
        while (comp := read_component(stream, binary)) is not None:
            if self._components and self._components[-1].output_dim != comp.input_dim:
                raise DimensionMismatchError(
                    self._components[-1].output_dim,
                    comp.input_dim,
                    index=len(self._components),
                )
            self._components.append(comp)
        self._resize_buffers()

        self.set_train_options(dataclasses.replace(self._opts, learn_rate=0.0))
        self.check()

    def write(self, stream: BinaryIO, binary: bool) -> None:
        """Validate, then write ``<Nnet>``, every component, ``</Nnet>``."""
        self.check()
        write_token(stream, binary, "<Nnet>")
        if not binary:
            stream.write(b"\n")
        for comp in self._components:
            comp.write(stream, binary)
        write_token(stream, binary, "</Nnet>")
        if not binary:
            stream.write(b"\n")

    def read_file(self, path: PathLike) -> None:
        """
        Read a network file, detecting the binary header automatically.
        """
        with open(path, "rb") as f:
            binary = f.read(len(BINARY_HEADER)) == BINARY_HEADER
            if not binary:
                f.seek(0)
            self.read(f, binary)
        if not self._components:
            logger.warning("The network '%s' is empty.", path)

    def write_file(self, path: PathLike, binary: bool = True) -> None:
        """Write the network to `path` (binary files carry a header)."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            if binary:
                f.write(BINARY_HEADER)
            self.write(f, binary)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def info(self) -> str:
        """Global summary followed by one line per component."""
        lines = [f"num-components {self.num_components()}"]
        if self._components:
            lines.append(f"input-dim {self.input_dim()}")
            lines.append(f"output-dim {self.output_dim()}")
        lines.append(f"number-of-parameters {self.num_params() / 1e6:g} millions")
        for i, comp in enumerate(self._components):
            lines.append(
                f"component {i + 1} : {comp.component_type.marker}, "
                f"input-dim {comp.input_dim}, output-dim {comp.output_dim}, "
                f"{comp.info()}"
            )
        return "\n".join(lines) + "\n"

    def info_gradient(self) -> str:
        out = ["\n### Gradient stats :\n"]
        for i, comp in enumerate(self._components):
            out.append(
                f"Component {i + 1} : {comp.component_type.marker}, {comp.info_gradient()}\n"
            )
        return "".join(out)

    def info_propagate(self) -> str:
        out = [
            "\n### Forward propagation buffer content :\n",
            f"[0] output of <Input>{moment_statistics(self._propagate_buf[0])}\n",
        ]
        for i, comp in enumerate(self._components):
            out.append(
                f"[{i + 1}] output of {comp.component_type.marker}"
                f"{moment_statistics(self._propagate_buf[i + 1])}\n"
            )
            if isinstance(comp, INestedNnetInfo):
                out.append(comp.info_propagate())
        return "".join(out)

    def info_backpropagate(self) -> str:
        out = [
            "\n### Backward propagation buffer content :\n",
            f"[0] diff of <Input>{moment_statistics(self._backpropagate_buf[0])}\n",
        ]
        for i, comp in enumerate(self._components):
            out.append(
                f"[{i + 1}] diff-output of {comp.component_type.marker}"
                f"{moment_statistics(self._backpropagate_buf[i + 1])}\n"
            )
            if isinstance(comp, INestedNnetInfo):
                out.append(comp.info_backpropagate())
        return "".join(out)

    def __repr__(self) -> str:
        lines = [f"{self.__class__.__name__}("]
        for i, comp in enumerate(self._components):
            lines.append(
                f"  {describe(comp, i)}"
            )
        lines.append(")")
        return "\n".join(lines)
