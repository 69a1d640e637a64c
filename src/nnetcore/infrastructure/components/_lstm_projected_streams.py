"""
Recurrent projected-LSTM components.

Both components consume multi-stream, time-major batches: with ``S``
parallel streams and ``T`` frames per stream, row ``t * S + s`` of the input
matrix is frame ``t`` of stream ``s``.

- `LstmProjectedStreams`: unidirectional. The recurrent state at the end of
  a chunk is carried into the next `propagate` call, so long utterances can
  be processed in consecutive chunks. `reset_streams` zeroes the carried
  state of the flagged streams (and fixes the stream count).
- `BLstmProjectedStreams`: bidirectional. A forward and a backward
  projected LSTM run over the chunk from zero state; the output is the
  concatenation ``[forward, backward]``. `set_seq_lengths` fixes the stream
  count and the valid length of each stream; frames past the length are
  padding and produce zero output.

Prototype options: ``<CellDim>`` (required), ``<ParamScale>`` (default
0.02), ``<ClipGradient>`` (default 0, disabled), ``<LearnRateCoef>``
(default 1).
"""

from __future__ import annotations

from typing import BinaryIO, Sequence

import numpy as np

from ...domain._component import ISequenceLengthAware, IStreamResettable
from ...domain._component_type import ComponentType
from ...domain._errors import MalformedStreamError
from .._component import UpdatableComponent
from ..io._proto_options import read_options
from ..io._token_io import (
    expect_token,
    peek_token,
    read_float,
    read_int,
    read_token,
    write_float,
    write_int,
    write_token,
)
from ._lstm_core import ProjectedLstm
from ._registry import register_component


class _ProjectedStreamsBase(UpdatableComponent):
    """
    Shared option handling and persistence for the projected-LSTM variants.

    Subclasses build their `ProjectedLstm` directions in `_allocate` and list
    them in `_directions`.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        self.clip_gradient = 0.0
        self.learn_rate_coef = 1.0
        self._allocate(self._default_cell_dim())

    def _default_cell_dim(self) -> int:
        return self.output_dim

    def _allocate(self, cell_dim: int) -> None:
        raise NotImplementedError

    def _directions(self) -> list[ProjectedLstm]:
        raise NotImplementedError

    @property
    def cell_dim(self) -> int:
        return self._directions()[0].cell_dim

    def _num_frames(self, rows: int, streams: int) -> int:
        if rows % streams != 0:
            raise ValueError(
                f"{self.marker}: {rows} rows are not divisible by {streams} streams"
            )
        return rows // streams

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    def _param_arrays(self) -> list[np.ndarray]:
        return [p for d in self._directions() for p in d.params()]

    def _gradient_arrays(self) -> list[np.ndarray]:
        return [g for d in self._directions() for g in d.corr]

    def update(self, x: np.ndarray, dy: np.ndarray) -> None:
        """
        Apply the gradients recorded by the last `backpropagate`.

        The arguments are accepted for contract compatibility; the gate
        gradients of the whole chunk were already computed during BPTT.
        """
        lr = self.opts.learn_rate * self.learn_rate_coef
        for d in self._directions():
            d.apply_update(lr, self.opts.momentum)

    # ------------------------------------------------------------------
    # Prototype / persistence
    # ------------------------------------------------------------------
    def _init_data(self, stream: BinaryIO) -> None:
        opts = read_options(
            stream,
            {
                "<CellDim>": int,
                "<ParamScale>": float,
                "<ClipGradient>": float,
                "<LearnRateCoef>": float,
            },
            owner=self.marker,
        )
        if "<CellDim>" not in opts:
            raise MalformedStreamError(f"{self.marker} prototype requires <CellDim>.")
        self._allocate(opts["<CellDim>"])
        self.clip_gradient = opts.get("<ClipGradient>", 0.0)
        self.learn_rate_coef = opts.get("<LearnRateCoef>", 1.0)
        param_scale = opts.get("<ParamScale>", 0.02)
        for d in self._directions():
            d.randomize(param_scale)

    def _write_data(self, stream: BinaryIO, binary: bool) -> None:
        write_token(stream, binary, "<CellDim>")
        write_int(stream, binary, self.cell_dim)
        write_token(stream, binary, "<ClipGradient>")
        write_float(stream, binary, self.clip_gradient)
        write_token(stream, binary, "<LearnRateCoef>")
        write_float(stream, binary, self.learn_rate_coef)
        if not binary:
            stream.write(b"\n")
        for d in self._directions():
            d.write(stream, binary)

    def _read_data(self, stream: BinaryIO, binary: bool) -> None:
        expect_token(stream, binary, "<CellDim>")
        cell_dim = read_int(stream, binary)
        if cell_dim <= 0:
            raise MalformedStreamError(f"{self.marker}: invalid <CellDim> {cell_dim}")
        self._allocate(cell_dim)
        while (token := peek_token(stream, binary)) in ("<ClipGradient>", "<LearnRateCoef>"):
            read_token(stream, binary)
            if token == "<ClipGradient>":
                self.clip_gradient = read_float(stream, binary)
            else:
                self.learn_rate_coef = read_float(stream, binary)
        for d in self._directions():
            d.read(stream, binary)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def _direction_prefixes(self) -> list[str]:
        return [""]

    def info(self) -> str:
        head = f"cell-dim {self.cell_dim}, clip-gradient {self.clip_gradient:g}"
        return head + "".join(
            d.info(prefix) for d, prefix in zip(self._directions(), self._direction_prefixes())
        )

    def info_gradient(self) -> str:
        return "".join(
            d.info_gradient(prefix)
            for d, prefix in zip(self._directions(), self._direction_prefixes())
        )


@register_component(ComponentType.LSTM_PROJECTED_STREAMS)
class LstmProjectedStreams(_ProjectedStreamsBase, IStreamResettable):
    """
    Unidirectional projected LSTM over parallel streams with carried state.

    ``output_dim`` is the projection width; the cell width defaults to it
    and is set with ``<CellDim>``.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        self.nstream = 1
        self._reset_state(self.nstream)

    def _allocate(self, cell_dim: int) -> None:
        self._lstm = ProjectedLstm(self.input_dim, int(cell_dim), self.output_dim)
        if hasattr(self, "nstream"):
            self._reset_state(self.nstream)

    def _directions(self) -> list[ProjectedLstm]:
        return [self._lstm]

    def _reset_state(self, nstream: int) -> None:
        self.prev_r = np.zeros((nstream, self.output_dim), dtype=np.float32)
        self.prev_c = np.zeros((nstream, self._lstm.cell_dim), dtype=np.float32)

    def reset_streams(self, stream_reset_flag: Sequence[int]) -> None:
        """
        Zero the carried state of every stream whose flag is 1.

        A flag list of a different length than the current stream count
        changes the stream count and clears all carried state.
        """
        flags = [int(v) for v in stream_reset_flag]
        if not flags:
            raise ValueError(f"{self.marker}: empty stream reset flag list")
        if len(flags) != self.nstream:
            self.nstream = len(flags)
            self._reset_state(self.nstream)
            return
        for s, flag in enumerate(flags):
            if flag == 1:
                self.prev_r[s] = 0.0
                self.prev_c[s] = 0.0

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        S = self.nstream
        T = self._num_frames(x.shape[0], S)
        seq = x.reshape(T, S, self.input_dim)
        R, r_last, c_last = self._lstm.forward(seq, self.prev_r, self.prev_c)
        self.prev_r, self.prev_c = r_last.copy(), c_last.copy()
        return R.reshape(T * S, self.output_dim)

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        S = self.nstream
        T = self._num_frames(dy.shape[0], S)
        dX = self._lstm.backward(
            dy.reshape(T, S, self.output_dim), clip_gradient=self.clip_gradient
        )
        return dX.reshape(T * S, self.input_dim)


@register_component(ComponentType.BLSTM_PROJECTED_STREAMS)
class BLstmProjectedStreams(_ProjectedStreamsBase, ISequenceLengthAware):
    """
    Bidirectional projected LSTM over parallel, length-masked streams.

    ``output_dim`` must be even; each direction projects to
    ``output_dim // 2``.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        if int(output_dim) % 2 != 0:
            raise ValueError(
                f"<BLstmProjectedStreams> output_dim must be even, got {output_dim}"
            )
        self.sequence_lengths: list[int] = []
        super().__init__(input_dim, output_dim)

    @property
    def proj_dim(self) -> int:
        return self.output_dim // 2

    def _default_cell_dim(self) -> int:
        return self.proj_dim

    def _allocate(self, cell_dim: int) -> None:
        self._fwd = ProjectedLstm(self.input_dim, int(cell_dim), self.proj_dim)
        self._bwd = ProjectedLstm(self.input_dim, int(cell_dim), self.proj_dim)

    def _directions(self) -> list[ProjectedLstm]:
        return [self._fwd, self._bwd]

    def _direction_prefixes(self) -> list[str]:
        return ["f_", "b_"]

    def set_seq_lengths(self, sequence_lengths: Sequence[int]) -> None:
        """
        Set the number of streams and the valid length of each.

        Raises
        ------
        ValueError
            If the list is empty or has a negative length.
        """
        lengths = [int(v) for v in sequence_lengths]
        if not lengths or any(v < 0 for v in lengths):
            raise ValueError(f"{self.marker}: invalid sequence lengths {lengths}")
        self.sequence_lengths = lengths

    def _mask(self, T: int, S: int) -> np.ndarray:
        lengths = np.asarray(self.sequence_lengths or [T], dtype=np.int64)
        return (np.arange(T)[:, None] < lengths[None, :]).astype(np.float32)

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        S = max(1, len(self.sequence_lengths))
        T = self._num_frames(x.shape[0], S)
        seq = x.reshape(T, S, self.input_dim)
        mask = self._mask(T, S)
        P, C = self.proj_dim, self.cell_dim
        zr = np.zeros((S, P), np.float32)
        zc = np.zeros((S, C), np.float32)
        Rf, _, _ = self._fwd.forward(seq, zr, zc, mask=mask)
        Rb, _, _ = self._bwd.forward(seq, zr, zc, mask=mask, reverse=True)
        return np.concatenate([Rf, Rb], axis=2).reshape(T * S, self.output_dim)

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        S = max(1, len(self.sequence_lengths))
        T = self._num_frames(dy.shape[0], S)
        d = dy.reshape(T, S, self.output_dim)
        P = self.proj_dim
        dXf = self._fwd.backward(d[:, :, :P], clip_gradient=self.clip_gradient)
        dXb = self._bwd.backward(d[:, :, P:], clip_gradient=self.clip_gradient)
        return (dXf + dXb).reshape(T * S, self.input_dim)
