"""
Training options shared by all updatable components of a network.

`NnetTrainOptions` is owned by the `Nnet` engine and pushed down to every
updatable component through `Nnet.set_train_options`, so a single learning
rate (and regularization setup) governs the whole network.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class NnetTrainOptions:
    """
    Learning hyperparameters applied uniformly to updatable components.

    Parameters
    ----------
    learn_rate : float, optional
        Base learning rate. Components scale it by their own coefficients.
        Must be non-negative (``0.0`` freezes the network). Defaults to 0.008.
    momentum : float, optional
        Momentum applied to the accumulated gradients. Must be in [0, 1).
        Defaults to 0.0.
    l1_penalty : float, optional
        L1 regularization coefficient. Must be non-negative. Defaults to 0.0.
    l2_penalty : float, optional
        L2 regularization coefficient. Must be non-negative. Defaults to 0.0.
    """

    learn_rate: float = 0.008
    momentum: float = 0.0
    l1_penalty: float = 0.0
    l2_penalty: float = 0.0

    def __post_init__(self) -> None:
        self.learn_rate = float(self.learn_rate)
        self.momentum = float(self.momentum)
        self.l1_penalty = float(self.l1_penalty)
        self.l2_penalty = float(self.l2_penalty)

        if self.learn_rate < 0.0:
            raise ValueError(f"learn_rate must be >= 0, got {self.learn_rate}")
        if not 0.0 <= self.momentum < 1.0:
            raise ValueError(f"momentum must be in [0, 1), got {self.momentum}")
        if self.l1_penalty < 0.0:
            raise ValueError(f"l1_penalty must be >= 0, got {self.l1_penalty}")
        if self.l2_penalty < 0.0:
            raise ValueError(f"l2_penalty must be >= 0, got {self.l2_penalty}")

    def __str__(self) -> str:
        return (
            f"TrainOptions : LearnRate {self.learn_rate}, Momentum {self.momentum}, "
            f"L2Penalty {self.l2_penalty}, L1Penalty {self.l1_penalty}"
        )
