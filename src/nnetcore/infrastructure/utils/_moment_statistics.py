"""
Moment statistics for diagnostic output.

Used by `Nnet.info*` and component `info()` methods to summarize parameter
arrays and buffer contents as
``( min m, max M, mean u, stddev s, skewness k3, kurtosis k4 )``.
"""

from __future__ import annotations

import numpy as np


def moment_statistics(arr: np.ndarray) -> str:
    """
    Summarize an array with its first four standardized moments.

    Parameters
    ----------
    arr : np.ndarray
        Array of any shape. Empty arrays are reported as ``( empty )``.

    Returns
    -------
    str
        Human-readable summary, padded with one space on each side.

    Notes
    -----
    Kurtosis is the excess kurtosis (0 for a normal distribution). For a
    constant array skewness and kurtosis are reported as 0.
    """
    a = np.asarray(arr, dtype=np.float64).reshape(-1)
    if a.size == 0:
        return " ( empty ) "

    mean = a.mean()
    centered = a - mean
    variance = float(np.mean(centered**2))
    if variance > 0.0:
        std = np.sqrt(variance)
        skewness = float(np.mean(centered**3)) / std**3
        kurtosis = float(np.mean(centered**4)) / variance**2 - 3.0
    else:
        skewness = 0.0
        kurtosis = 0.0

    return (
        f" ( min {a.min():.6g}, max {a.max():.6g}, mean {mean:.6g}, "
        f"stddev {np.sqrt(variance):.6g}, skewness {skewness:.6g}, "
        f"kurtosis {kurtosis:.6g} ) "
    )
