"""
Parallel composition of nested networks.

`ParallelComponent` owns a list of nested `Nnet` objects. The input columns
are split into consecutive blocks, one per nested network (block widths are
the nested input widths), and the nested outputs are concatenated column-wise
in the same order.

Backpropagation runs each nested network's own `backpropagate`, which
updates the nested layers as it goes; the component's own `update` has
nothing left to do.

Prototype options
-----------------
``<NestedNnetProto> a.proto b.proto ...``
    Build each nested network from a prototype file.
``<NestedNnetFilename> a.nnet b.nnet ...``
    Load each nested network from a persisted network file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, BinaryIO, Iterable, List

import numpy as np

from ...domain._component import INestedNnetInfo
from ...domain._component_type import ComponentType
from ...domain._errors import DimensionMismatchError, MalformedStreamError, ParameterCountError
from ...domain._train_options import NnetTrainOptions
from .._component import UpdatableComponent
from ..io._token_io import (
    at_eof,
    expect_token,
    peek_token,
    read_int,
    read_token,
    write_int,
    write_token,
)
from ._registry import register_component

if TYPE_CHECKING:
    from ..nnet._nnet import Nnet

_PROTO_KEYS = ("<NestedNnetProto>", "<NestedNnetFilename>")


def _nnet_class():
    # the engine imports this package to register components
    from ..nnet._nnet import Nnet

    return Nnet


@register_component(ComponentType.PARALLEL_COMPONENT)
class ParallelComponent(UpdatableComponent, INestedNnetInfo):
    """
    Run nested networks side by side on column blocks of the input.

    Parameters
    ----------
    input_dim : int
        Total input width; must equal the sum of nested input widths once
        nested networks are attached.
    output_dim : int
        Total output width; must equal the sum of nested output widths.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        self.nnets: List["Nnet"] = []

    @classmethod
    def from_nnets(cls, nnets: Iterable["Nnet"]) -> "ParallelComponent":
        """
        Build a component owning `nnets`; widths are derived from them.
        """
        nnets = list(nnets)
        if not nnets:
            raise ValueError("ParallelComponent needs at least one nested network")
        comp = cls(
            sum(n.input_dim() for n in nnets),
            sum(n.output_dim() for n in nnets),
        )
        comp.nnets = nnets
        comp._check_nested()
        return comp

    def _check_nested(self) -> None:
        if not self.nnets:
            raise ValueError(f"{self.marker} has no nested networks")
        for n in self.nnets:
            n.check()
        in_sum = sum(n.input_dim() for n in self.nnets)
        out_sum = sum(n.output_dim() for n in self.nnets)
        if in_sum != self.input_dim:
            raise DimensionMismatchError(
                in_sum, self.input_dim, what=f"{self.marker} nested input widths"
            )
        if out_sum != self.output_dim:
            raise DimensionMismatchError(
                out_sum, self.output_dim, what=f"{self.marker} nested output widths"
            )

    @staticmethod
    def _split(mat: np.ndarray, widths: List[int]) -> List[np.ndarray]:
        bounds = np.cumsum(widths)[:-1]
        return np.split(mat, bounds, axis=1)

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        parts = self._split(x, [n.input_dim() for n in self.nnets])
        return np.concatenate(
            [n.propagate(p) for n, p in zip(self.nnets, parts)], axis=1
        )

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        parts = self._split(dy, [n.output_dim() for n in self.nnets])
        return np.concatenate(
            [n.backpropagate(p) for n, p in zip(self.nnets, parts)], axis=1
        )

    def update(self, x: np.ndarray, dy: np.ndarray) -> None:
        # nested networks already updated during backpropagate
        return None

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    @property
    def num_params(self) -> int:
        return int(sum(n.num_params() for n in self.nnets))

    def get_params(self) -> np.ndarray:
        if not self.nnets:
            return np.zeros((0,), dtype=np.float32)
        return np.concatenate([n.get_params() for n in self.nnets])

    def set_params(self, params: np.ndarray) -> None:
        vec = np.asarray(params, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self.num_params:
            raise ParameterCountError(vec.shape[0], self.num_params, what="params")
        pos = 0
        for n in self.nnets:
            k = n.num_params()
            n.set_weights(vec[pos : pos + k])
            pos += k

    def get_gradient(self) -> np.ndarray:
        if not self.nnets:
            return np.zeros((0,), dtype=np.float32)
        return np.concatenate([n.get_gradient() for n in self.nnets])

    def set_train_options(self, opts: NnetTrainOptions) -> None:
        super().set_train_options(opts)
        for n in self.nnets:
            n.set_train_options(opts)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def _init_data(self, stream: BinaryIO) -> None:
        Nnet = _nnet_class()
        while not at_eof(stream):
            key = read_token(stream, False)
            if key not in _PROTO_KEYS:
                raise MalformedStreamError(
                    f"Unknown token {key!r} in prototype of {self.marker}. "
                    f"Accepted: {', '.join(_PROTO_KEYS)}"
                )
            paths = []
            while not at_eof(stream) and not peek_token(stream, False).startswith("<"):
                paths.append(read_token(stream, False))
            if not paths:
                raise MalformedStreamError(f"Missing file names for {key} in {self.marker}")
            for path in paths:
                if key == "<NestedNnetProto>":
                    self.nnets.append(Nnet.from_proto(path))
                else:
                    self.nnets.append(Nnet.from_file(path))
        try:
            self._check_nested()
        except ValueError as e:
            raise MalformedStreamError(str(e)) from e

    def _write_data(self, stream: BinaryIO, binary: bool) -> None:
        write_token(stream, binary, "<NestedNnetCount>")
        write_int(stream, binary, len(self.nnets))
        if not binary:
            stream.write(b"\n")
        for i, n in enumerate(self.nnets):
            write_token(stream, binary, "<NestedNnet>")
            write_int(stream, binary, i + 1)
            if not binary:
                stream.write(b"\n")
            n.write(stream, binary)
        write_token(stream, binary, "</ParallelComponent>")
        if not binary:
            stream.write(b"\n")

    def _read_data(self, stream: BinaryIO, binary: bool) -> None:
        Nnet = _nnet_class()
        expect_token(stream, binary, "<NestedNnetCount>")
        count = read_int(stream, binary)
        self.nnets = []
        for i in range(count):
            expect_token(stream, binary, "<NestedNnet>")
            index = read_int(stream, binary)
            if index != i + 1:
                raise MalformedStreamError(
                    f"{self.marker}: expected nested network {i + 1}, got {index}"
                )
            nnet = Nnet()
            nnet.read(stream, binary)
            self.nnets.append(nnet)
        expect_token(stream, binary, "</ParallelComponent>")
        try:
            self._check_nested()
        except ValueError as e:
            raise MalformedStreamError(str(e)) from e

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def info(self) -> str:
        out = []
        for i, n in enumerate(self.nnets):
            out.append(f"\n nested_network #{i + 1} {{\n{n.info()}}}")
        return "".join(out)

    def info_gradient(self) -> str:
        out = []
        for i, n in enumerate(self.nnets):
            out.append(f"\n nested_gradient #{i + 1} {{\n{n.info_gradient()}}}")
        return "".join(out)

    def info_propagate(self) -> str:
        out = []
        for i, n in enumerate(self.nnets):
            out.append(f"nested_propagate #{i + 1} {{\n{n.info_propagate()}}}\n")
        return "".join(out)

    def info_backpropagate(self) -> str:
        out = []
        for i, n in enumerate(self.nnets):
            out.append(f"nested_backpropagate #{i + 1} {{\n{n.info_backpropagate()}}}\n")
        return "".join(out)
