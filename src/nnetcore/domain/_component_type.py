"""
Component variant tags.

Each concrete component class is identified by a `ComponentType` member.
The member value is the stable marker string used both in persisted
networks and in textual prototypes (e.g. ``<AffineTransform>``), and in
diagnostic output such as `Nnet.info()`.
"""

from __future__ import annotations

from enum import Enum


class ComponentType(Enum):
    """
    Closed set of component variants known to the engine.
    """

    AFFINE_TRANSFORM = "<AffineTransform>"
    SIGMOID = "<Sigmoid>"
    TANH = "<Tanh>"
    SOFTMAX = "<Softmax>"
    DROPOUT = "<Dropout>"
    LSTM_PROJECTED_STREAMS = "<LstmProjectedStreams>"
    BLSTM_PROJECTED_STREAMS = "<BLstmProjectedStreams>"
    PARALLEL_COMPONENT = "<ParallelComponent>"

    @property
    def marker(self) -> str:
        """Return the stable marker string, e.g. ``<Sigmoid>``."""
        return self.value

    @classmethod
    def from_marker(cls, marker: str) -> "ComponentType":
        """
        Resolve a marker string into a variant tag.

        Raises
        ------
        ValueError
            If `marker` does not name a known variant.
        """
        return cls(marker)

    def __str__(self) -> str:
        return self.value
