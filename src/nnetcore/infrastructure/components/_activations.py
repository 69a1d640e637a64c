"""
Elementwise activation components.

Activations preserve width (``input_dim == output_dim``) and carry no
parameters, so they persist only their marker and widths.

- `Sigmoid`: ``y = 1 / (1 + exp(-x))``, ``dx = dy * y * (1 - y)``
- `Tanh`: ``y = tanh(x)``, ``dx = dy * (1 - y^2)``
- `Softmax`: row-wise softmax. Backpropagation passes ``dy`` through
  unchanged: the softmax output is expected to feed a cross-entropy
  objective whose gradient ``y - target`` the caller already computed with
  respect to the softmax input.
"""

from __future__ import annotations

import numpy as np

from ...domain._component_type import ComponentType
from .._component import Component
from ._registry import register_component


class _Activation(Component):
    """
    Width-preserving, parameter-free component.
    """

    def __init__(self, input_dim: int, output_dim: int) -> None:
        super().__init__(input_dim, output_dim)
        if self.input_dim != self.output_dim:
            raise ValueError(
                f"{self.marker} requires input_dim == output_dim, "
                f"got {self.input_dim} != {self.output_dim}"
            )


@register_component(ComponentType.SIGMOID)
class Sigmoid(_Activation):
    """
    Logistic sigmoid activation.
    """

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        # Split by sign so exp never overflows.
        out = np.empty_like(x)
        pos = x >= 0
        out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
        ex = np.exp(x[~pos])
        out[~pos] = ex / (1.0 + ex)
        return out

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        return (dy * y * (1.0 - y)).astype(np.float32, copy=False)


@register_component(ComponentType.TANH)
class Tanh(_Activation):
    """
    Hyperbolic tangent activation.
    """

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        return np.tanh(x)

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        return (dy * (1.0 - y * y)).astype(np.float32, copy=False)


@register_component(ComponentType.SOFTMAX)
class Softmax(_Activation):
    """
    Row-wise softmax activation.

    Notes
    -----
    Backpropagation is the identity on ``dy`` (see module docstring).
    """

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        shifted = x - x.max(axis=1, keepdims=True)
        e = np.exp(shifted)
        return (e / e.sum(axis=1, keepdims=True)).astype(np.float32, copy=False)

    def _backpropagate(self, x: np.ndarray, y: np.ndarray, dy: np.ndarray) -> np.ndarray:
        return np.array(dy, dtype=np.float32, copy=True)
