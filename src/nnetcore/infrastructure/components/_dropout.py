"""
Dropout component.

During `propagate`, each element is kept with probability ``retention``
and kept elements are scaled by ``1 / retention`` so the expected activation
is unchanged. `backpropagate` applies the same mask and scale to the output
gradient.

Unlike a train/eval switch, the component is always active; callers disable
it for inference with ``Nnet.set_dropout_retention(1.0)``.
"""

from __future__ import annotations

from typing import BinaryIO, Optional

import numpy as np

from ...domain._component import IRetentionControl
from ...domain._component_type import ComponentType
from ...domain._errors import MalformedStreamError
from .._component import Component
from ..io._proto_options import read_options
from ..io._token_io import peek_token, read_float, read_token, write_float, write_token
from ._registry import register_component


@register_component(ComponentType.DROPOUT)
class Dropout(Component, IRetentionControl):
    """
    Inverted dropout with a configurable retention probability.

    Parameters
    ----------
    input_dim : int
        Width of the input; must equal `output_dim`.
    output_dim : int
        Width of the output.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        if self.input_dim != self.output_dim:
            raise ValueError(
                f"{self.marker} requires input_dim == output_dim, "
                f"got {self.input_dim} != {self.output_dim}"
            )
        self.dropout_retention = 0.5
        self._mask: Optional[np.ndarray] = None

    def get_dropout_retention(self) -> float:
        return self.dropout_retention

    def set_dropout_retention(self, retention: float) -> None:
        """
        Raises
        ------
        ValueError
            If `retention` is not in (0, 1].
        """
        r = float(retention)
        if not 0.0 < r <= 1.0:
            raise ValueError(f"Dropout retention must be in (0, 1], got {r}")
        self.dropout_retention = r

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        r = self.dropout_retention
        if r >= 1.0:
            self._mask = np.ones_like(x)
            return np.array(x, dtype=np.float32, copy=True)
        keep = (np.random.rand(*x.shape) < r).astype(np.float32)
        self._mask = keep / np.float32(r)
        return x * self._mask

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        if self._mask is None or self._mask.shape != dy.shape:
            raise RuntimeError(
                f"{self.marker} backpropagate called without a matching propagate."
            )
        return dy * self._mask

    def _init_data(self, stream: BinaryIO) -> None:
        opts = read_options(stream, {"<DropoutRetention>": float}, owner=self.marker)
        if "<DropoutRetention>" in opts:
            self.set_dropout_retention(opts["<DropoutRetention>"])

    def _write_data(self, stream: BinaryIO, binary: bool) -> None:
        write_token(stream, binary, "<DropoutRetention>")
        write_float(stream, binary, self.dropout_retention)
        if not binary:
            stream.write(b"\n")

    def _read_data(self, stream: BinaryIO, binary: bool) -> None:
        if peek_token(stream, binary) == "<DropoutRetention>":
            read_token(stream, binary)
            try:
                self.set_dropout_retention(read_float(stream, binary))
            except ValueError as e:
                raise MalformedStreamError(str(e)) from e

    def info(self) -> str:
        return f"dropout-retention {self.dropout_retention:g}"
