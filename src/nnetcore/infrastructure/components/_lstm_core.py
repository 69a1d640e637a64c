"""
Projected LSTM math shared by the recurrent components.

`ProjectedLstm` holds the parameters of one LSTM direction with peephole
connections and a recurrent projection layer, and runs it over time-major
multi-stream input of shape ``(T, S, D)``:

    gifo_t = x_t W_x^T + r_{t-1} W_r^T + b
    g_t = tanh(gifo_t[g])
    i_t = sigmoid(gifo_t[i] + c_{t-1} * p_i)
    f_t = sigmoid(gifo_t[f] + c_{t-1} * p_f)
    c_t = g_t * i_t + c_{t-1} * f_t
    h_t = tanh(c_t)
    o_t = sigmoid(gifo_t[o] + c_t * p_o)
    m_t = o_t * h_t
    r_t = m_t W_rm^T

with cell width ``C`` and projection width ``P``. The flattened parameter
layout is ``W_x, W_r, b, p_i, p_f, p_o, W_rm``.

`forward` records every intermediate needed by `backward`, which performs
backpropagation through time over the same chunk and stores the parameter
gradients; `apply_update` turns them into an SGD step with momentum.

An optional ``(T, S)`` mask forces cell and projection states of padded
frames to zero, so a padded frame neither produces output nor carries
state; gradients through those frames are masked accordingly.
"""

from __future__ import annotations

from typing import BinaryIO, Optional, Tuple

import numpy as np

from ...domain._errors import MalformedStreamError
from ..io._token_io import read_matrix, read_vector, write_matrix, write_vector
from ..utils._moment_statistics import moment_statistics

_PARAM_NAMES = (
    "w_gifo_x",
    "w_gifo_r",
    "bias",
    "peephole_i_c",
    "peephole_f_c",
    "peephole_o_c",
    "w_r_m",
)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return (0.5 * (1.0 + np.tanh(0.5 * x))).astype(np.float32, copy=False)


class ProjectedLstm:
    """
    Parameters, forward pass and BPTT of one projected-LSTM direction.

    Parameters
    ----------
    input_dim : int
        Width ``D`` of each input frame.
    cell_dim : int
        Number of memory cells ``C``.
    proj_dim : int
        Width ``P`` of the recurrent projection (the output width).
    """

    def __init__(self, input_dim: int, cell_dim: int, proj_dim: int) -> None:
        if cell_dim <= 0:
            raise ValueError(f"cell_dim must be positive, got {cell_dim}")
        self.input_dim = int(input_dim)
        self.cell_dim = int(cell_dim)
        self.proj_dim = int(proj_dim)
        C, P, D = self.cell_dim, self.proj_dim, self.input_dim

        self.w_gifo_x = np.zeros((4 * C, D), dtype=np.float32)
        self.w_gifo_r = np.zeros((4 * C, P), dtype=np.float32)
        self.bias = np.zeros((4 * C,), dtype=np.float32)
        self.peephole_i_c = np.zeros((C,), dtype=np.float32)
        self.peephole_f_c = np.zeros((C,), dtype=np.float32)
        self.peephole_o_c = np.zeros((C,), dtype=np.float32)
        self.w_r_m = np.zeros((P, C), dtype=np.float32)

        # accumulated (momentum) gradients, same layout as the parameters
        self.corr = [np.zeros_like(p) for p in self.params()]
        self._grads: Optional[list[np.ndarray]] = None
        self._cache: Optional[dict] = None

    def params(self) -> list[np.ndarray]:
        return [getattr(self, name) for name in _PARAM_NAMES]

    def randomize(self, param_scale: float) -> None:
        """Draw every parameter from ``U(-param_scale, param_scale)``."""
        for p in self.params():
            p[...] = (np.random.rand(*p.shape) - 0.5) * 2.0 * param_scale

    # ------------------------------------------------------------------
    # Forward / backward
    # ------------------------------------------------------------------
    def forward(
        self,
        x: np.ndarray,
        r0: np.ndarray,
        c0: np.ndarray,
        *,
        mask: Optional[np.ndarray] = None,
        reverse: bool = False,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Run the recurrence over ``x`` of shape ``(T, S, D)``.

        Parameters
        ----------
        x : np.ndarray
            Time-major input frames.
        r0, c0 : np.ndarray
            Initial projection ``(S, P)`` and cell ``(S, C)`` states.
        mask : Optional[np.ndarray]
            ``(T, S)`` array of 0/1; frames with 0 are padding.
        reverse : bool
            Process frames from ``T - 1`` down to ``0``.

        Returns
        -------
        Tuple[np.ndarray, np.ndarray, np.ndarray]
            Projection outputs ``(T, S, P)`` and the final ``r`` and ``c``
            states (those of the last processed frame).
        """
        T, S, _ = x.shape
        C = self.cell_dim

        gx = x @ self.w_gifo_x.T + self.bias
        shape_c = (T, S, C)
        G, I, F, O = (np.zeros(shape_c, np.float32) for _ in range(4))
        Cs, Hs, Ms, Cprev = (np.zeros(shape_c, np.float32) for _ in range(4))
        R = np.zeros((T, S, self.proj_dim), np.float32)
        Rprev = np.zeros_like(R)

        r_prev = np.asarray(r0, dtype=np.float32)
        c_prev = np.asarray(c0, dtype=np.float32)
        order = range(T - 1, -1, -1) if reverse else range(T)
        for t in order:
            gifo = gx[t] + r_prev @ self.w_gifo_r.T
            g = np.tanh(gifo[:, :C])
            i = _sigmoid(gifo[:, C : 2 * C] + c_prev * self.peephole_i_c)
            f = _sigmoid(gifo[:, 2 * C : 3 * C] + c_prev * self.peephole_f_c)
            c = g * i + c_prev * f
            if mask is not None:
                c = c * mask[t][:, None]
            h = np.tanh(c)
            o = _sigmoid(gifo[:, 3 * C :] + c * self.peephole_o_c)
            m = o * h
            r = m @ self.w_r_m.T
            if mask is not None:
                r = r * mask[t][:, None]

            G[t], I[t], F[t], O[t] = g, i, f, o
            Cs[t], Hs[t], Ms[t], R[t] = c, h, m, r
            Cprev[t], Rprev[t] = c_prev, r_prev
            r_prev, c_prev = r, c

        self._cache = {
            "x": x, "G": G, "I": I, "F": F, "O": O, "C": Cs, "H": Hs,
            "M": Ms, "Cprev": Cprev, "Rprev": Rprev, "mask": mask,
            "reverse": reverse,
        }
        return R, r_prev, c_prev

    def backward(self, dR: np.ndarray, *, clip_gradient: float = 0.0) -> np.ndarray:
        """
        Backpropagate through time over the chunk seen by the last `forward`.

        Parameters
        ----------
        dR : np.ndarray
            Gradient with respect to the projection outputs, ``(T, S, P)``.
        clip_gradient : float
            If positive, gate gradients are clipped to
            ``[-clip_gradient, clip_gradient]``.

        Returns
        -------
        np.ndarray
            Gradient with respect to the input, ``(T, S, D)``.

        Raises
        ------
        RuntimeError
            If no forward pass has been recorded.
        """
        if self._cache is None:
            raise RuntimeError("ProjectedLstm.backward called before forward.")
        k = self._cache
        T, S, _ = k["x"].shape
        C = self.cell_dim
        mask = k["mask"]

        DGIFO = np.zeros((T, S, 4 * C), np.float32)
        DR = np.zeros((T, S, self.proj_dim), np.float32)

        dgifo_next = np.zeros((S, 4 * C), np.float32)
        dc_next = np.zeros((S, C), np.float32)
        f_next = np.zeros((S, C), np.float32)

        order = range(T) if k["reverse"] else range(T - 1, -1, -1)
        for t in order:
            g, i, f, o = k["G"][t], k["I"][t], k["F"][t], k["O"][t]
            h, c_prev = k["H"][t], k["Cprev"][t]

            dr = dR[t] + dgifo_next @ self.w_gifo_r
            if mask is not None:
                dr = dr * mask[t][:, None]
            dm = dr @ self.w_r_m
            do = dm * h * o * (1.0 - o)
            dc = (
                dm * o * (1.0 - h * h)
                + dc_next * f_next
                + dgifo_next[:, C : 2 * C] * self.peephole_i_c
                + dgifo_next[:, 2 * C : 3 * C] * self.peephole_f_c
                + do * self.peephole_o_c
            )
            if mask is not None:
                dc = dc * mask[t][:, None]
            di = dc * g * i * (1.0 - i)
            df = dc * c_prev * f * (1.0 - f)
            dg = dc * i * (1.0 - g * g)

            dgifo = np.concatenate([dg, di, df, do], axis=1)
            if clip_gradient > 0.0:
                np.clip(dgifo, -clip_gradient, clip_gradient, out=dgifo)

            DGIFO[t], DR[t] = dgifo, dr
            dgifo_next, dc_next, f_next = dgifo, dc, f

        D = k["x"].shape[2]
        dg2 = DGIFO.reshape(-1, 4 * C)
        self._grads = [
            dg2.T @ k["x"].reshape(-1, D),
            dg2.T @ k["Rprev"].reshape(-1, self.proj_dim),
            dg2.sum(axis=0),
            (DGIFO[:, :, C : 2 * C] * k["Cprev"]).sum(axis=(0, 1)),
            (DGIFO[:, :, 2 * C : 3 * C] * k["Cprev"]).sum(axis=(0, 1)),
            (DGIFO[:, :, 3 * C :] * k["C"]).sum(axis=(0, 1)),
            DR.reshape(-1, self.proj_dim).T @ k["M"].reshape(-1, C),
        ]
        return (DGIFO @ self.w_gifo_x).astype(np.float32, copy=False)

    def apply_update(self, lr: float, momentum: float) -> None:
        """
        Fold the last gradients into the momentum buffers and step.

        Does nothing if no backward pass has run since the last update.
        """
        if self._grads is None:
            return
        for p, corr, grad in zip(self.params(), self.corr, self._grads):
            corr *= momentum
            corr += grad.astype(np.float32, copy=False)
            p -= lr * corr
        self._grads = None

    # ------------------------------------------------------------------
    # Persistence / diagnostics
    # ------------------------------------------------------------------
    def write(self, stream: BinaryIO, binary: bool) -> None:
        for p in self.params():
            if p.ndim == 2:
                write_matrix(stream, binary, p)
            else:
                write_vector(stream, binary, p)

    def read(self, stream: BinaryIO, binary: bool) -> None:
        for name, p in zip(_PARAM_NAMES, self.params()):
            arr = read_matrix(stream, binary) if p.ndim == 2 else read_vector(stream, binary)
            if arr.shape != p.shape:
                raise MalformedStreamError(
                    f"LSTM parameter '{name}' has shape {arr.shape}, expected {p.shape}"
                )
            p[...] = arr

    def info(self, prefix: str = "") -> str:
        return "".join(
            f"\n  {prefix}{name}{moment_statistics(p)}"
            for name, p in zip(_PARAM_NAMES, self.params())
        )

    def info_gradient(self, prefix: str = "") -> str:
        return "".join(
            f"\n  {prefix}{name}_corr{moment_statistics(g)}"
            for name, g in zip(_PARAM_NAMES, self.corr)
        )
