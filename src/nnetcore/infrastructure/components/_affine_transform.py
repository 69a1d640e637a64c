"""
Affine transform (fully connected) component.

Implements

    y = x W^T + b

with ``W`` of shape ``(output_dim, input_dim)`` and ``b`` of shape
``(output_dim,)``, operating on row-major batches ``x`` of shape
``(rows, input_dim)``.

Update rule
-----------
For a batch of ``N`` rows with output gradient ``dy``:

    W_corr <- momentum * W_corr + dy^T x
    b_corr <- momentum * b_corr + sum_rows(dy)
    W      <- W - lr * l2 * N * W                 (if l2 > 0)
    W      <- shrink(W, lr * l1 * N)              (if l1 > 0)
    W      <- W - lr * W_corr
    b      <- b - lr_bias * b_corr

where ``lr = learn_rate * learn_rate_coef`` and
``lr_bias = learn_rate * bias_learn_rate_coef``. When ``max_norm > 0`` every
row of ``W`` whose L2 norm exceeds ``max_norm`` is rescaled to ``max_norm``.

The flattened parameter vector is the row-major weight matrix followed by
the bias vector.
"""

from __future__ import annotations

from typing import BinaryIO

import numpy as np

from ...domain._component_type import ComponentType
from ...domain._errors import MalformedStreamError
from .._component import UpdatableComponent
from ..io._proto_options import read_options
from ..io._token_io import (
    peek_token,
    read_float,
    read_matrix,
    read_token,
    read_vector,
    write_float,
    write_matrix,
    write_token,
    write_vector,
)
from ..utils._moment_statistics import moment_statistics
from ._registry import register_component


@register_component(ComponentType.AFFINE_TRANSFORM)
class AffineTransform(UpdatableComponent):
    """
    Fully connected layer with bias.

    Parameters
    ----------
    input_dim : int
        Number of input features.
    output_dim : int
        Number of output features.

    Notes
    -----
    A freshly constructed layer has zero weights and bias; prototypes
    (`init_component`) randomize them, persisted networks restore them.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        self.linearity = np.zeros((self.output_dim, self.input_dim), dtype=np.float32)
        self.bias = np.zeros((self.output_dim,), dtype=np.float32)
        self.linearity_corr = np.zeros_like(self.linearity)
        self.bias_corr = np.zeros_like(self.bias)

        self.learn_rate_coef = 1.0
        self.bias_learn_rate_coef = 1.0
        self.max_norm = 0.0

    # ------------------------------------------------------------------
    # Parameter access
    # ------------------------------------------------------------------
    def get_linearity(self) -> np.ndarray:
        return self.linearity.copy()

    def set_linearity(self, linearity: np.ndarray) -> None:
        arr = np.asarray(linearity, dtype=np.float32)
        if arr.shape != self.linearity.shape:
            raise ValueError(
                f"linearity shape mismatch: {arr.shape} vs {self.linearity.shape}"
            )
        self.linearity[...] = arr

    def get_bias(self) -> np.ndarray:
        return self.bias.copy()

    def set_bias(self, bias: np.ndarray) -> None:
        arr = np.asarray(bias, dtype=np.float32).reshape(-1)
        if arr.shape != self.bias.shape:
            raise ValueError(f"bias shape mismatch: {arr.shape} vs {self.bias.shape}")
        self.bias[...] = arr

    def _param_arrays(self) -> list[np.ndarray]:
        return [self.linearity, self.bias]

    def _gradient_arrays(self) -> list[np.ndarray]:
        return [self.linearity_corr, self.bias_corr]

    # ------------------------------------------------------------------
    # Math
    # ------------------------------------------------------------------
    def _propagate(self, x: np.ndarray) -> np.ndarray:
        return (x @ self.linearity.T + self.bias).astype(np.float32, copy=False)

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        return (dy @ self.linearity).astype(np.float32, copy=False)

    def update(self, x: np.ndarray, dy: np.ndarray) -> None:
        """
        Apply one SGD step (with momentum and regularization) in place.
        """
        lr = self.opts.learn_rate * self.learn_rate_coef
        lr_bias = self.opts.learn_rate * self.bias_learn_rate_coef
        mmt = self.opts.momentum
        l2 = self.opts.l2_penalty
        l1 = self.opts.l1_penalty
        num_frames = x.shape[0]

        self.linearity_corr *= mmt
        self.linearity_corr += dy.T @ x
        self.bias_corr *= mmt
        self.bias_corr += dy.sum(axis=0)

        if l2 != 0.0:
            self.linearity -= lr * l2 * num_frames * self.linearity
        if l1 != 0.0:
            self._regularize_l1(lr * l1 * num_frames)

        self.linearity -= lr * self.linearity_corr
        self.bias -= lr_bias * self.bias_corr

        if self.max_norm > 0.0:
            norms = np.sqrt(np.sum(self.linearity**2, axis=1))
            scale = np.where(norms > self.max_norm, self.max_norm / np.maximum(norms, 1e-30), 1.0)
            self.linearity *= scale[:, None].astype(np.float32)

    def _regularize_l1(self, l1: float) -> None:
        # Shrink towards zero; weights whose sign would flip are clamped to 0
        # together with their accumulated gradient.
        w = self.linearity
        shrunk = w - np.sign(w) * l1
        crossed = (shrunk * w) < 0.0
        shrunk[crossed] = 0.0
        self.linearity_corr[crossed] = 0.0
        w[...] = np.where(w == 0.0, 0.0, shrunk)

    # ------------------------------------------------------------------
    # Prototype / persistence
    # ------------------------------------------------------------------
    def _init_data(self, stream: BinaryIO) -> None:
        opts = read_options(
            stream,
            {
                "<ParamStddev>": float,
                "<BiasMean>": float,
                "<BiasRange>": float,
                "<LearnRateCoef>": float,
                "<BiasLearnRateCoef>": float,
                "<MaxNorm>": float,
            },
            owner=self.marker,
        )
        param_stddev = opts.get("<ParamStddev>", 0.1)
        bias_mean = opts.get("<BiasMean>", -2.0)
        bias_range = opts.get("<BiasRange>", 2.0)
        self.learn_rate_coef = opts.get("<LearnRateCoef>", 1.0)
        self.bias_learn_rate_coef = opts.get("<BiasLearnRateCoef>", 1.0)
        self.max_norm = opts.get("<MaxNorm>", 0.0)

        self.linearity[...] = np.random.randn(self.output_dim, self.input_dim) * param_stddev
        self.bias[...] = bias_mean + (np.random.rand(self.output_dim) - 0.5) * bias_range

    def _write_data(self, stream: BinaryIO, binary: bool) -> None:
        write_token(stream, binary, "<LearnRateCoef>")
        write_float(stream, binary, self.learn_rate_coef)
        write_token(stream, binary, "<BiasLearnRateCoef>")
        write_float(stream, binary, self.bias_learn_rate_coef)
        write_token(stream, binary, "<MaxNorm>")
        write_float(stream, binary, self.max_norm)
        write_matrix(stream, binary, self.linearity)
        write_vector(stream, binary, self.bias)

    def _read_data(self, stream: BinaryIO, binary: bool) -> None:
        while (token := peek_token(stream, binary)) is not None and token.startswith("<"):
            if token == "<LearnRateCoef>":
                read_token(stream, binary)
                self.learn_rate_coef = read_float(stream, binary)
            elif token == "<BiasLearnRateCoef>":
                read_token(stream, binary)
                self.bias_learn_rate_coef = read_float(stream, binary)
            elif token == "<MaxNorm>":
                read_token(stream, binary)
                self.max_norm = read_float(stream, binary)
            else:
                break

        linearity = read_matrix(stream, binary)
        bias = read_vector(stream, binary)
        if linearity.shape != self.linearity.shape:
            raise MalformedStreamError(
                f"{self.marker} linearity shape {linearity.shape}, "
                f"expected {self.linearity.shape}"
            )
        if bias.shape != self.bias.shape:
            raise MalformedStreamError(
                f"{self.marker} bias shape {bias.shape}, expected {self.bias.shape}"
            )
        self.linearity[...] = linearity
        self.bias[...] = bias

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def info(self) -> str:
        return (
            f"\n  linearity{moment_statistics(self.linearity)}, "
            f"lr-coef {self.learn_rate_coef:g}, max-norm {self.max_norm:g}"
            f"\n  bias{moment_statistics(self.bias)}, "
            f"lr-coef {self.bias_learn_rate_coef:g}"
        )

    def info_gradient(self) -> str:
        return (
            f"\n  linearity_grad{moment_statistics(self.linearity_corr)}, "
            f"lr-coef {self.learn_rate_coef:g}, max-norm {self.max_norm:g}"
            f"\n  bias_grad{moment_statistics(self.bias_corr)}, "
            f"lr-coef {self.bias_learn_rate_coef:g}"
        )
