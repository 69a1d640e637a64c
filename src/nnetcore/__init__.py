"""
nnetcore: a feed-forward network engine on NumPy.

The public surface is the `Nnet` engine, the built-in component variants,
`NnetTrainOptions`, and the `NnetError` hierarchy.
"""

from .domain import (
    BufferChainError,
    ComponentType,
    DimensionMismatchError,
    IComponent,
    IUpdatableComponent,
    MalformedStreamError,
    NnetError,
    NnetTrainOptions,
    ParameterCountError,
    ParameterExplosionError,
    UnimplementedParameterAccessError,
    UnknownComponentError,
)
from .infrastructure.components import (
    AffineTransform,
    BLstmProjectedStreams,
    Dropout,
    LstmProjectedStreams,
    ParallelComponent,
    Sigmoid,
    Softmax,
    Tanh,
)
from .infrastructure.nnet import Nnet

__version__ = "0.1.0a0"

__all__ = [
    "AffineTransform",
    "BLstmProjectedStreams",
    "BufferChainError",
    "ComponentType",
    "DimensionMismatchError",
    "Dropout",
    "IComponent",
    "IUpdatableComponent",
    "LstmProjectedStreams",
    "MalformedStreamError",
    "Nnet",
    "NnetError",
    "NnetTrainOptions",
    "ParallelComponent",
    "ParameterCountError",
    "ParameterExplosionError",
    "Sigmoid",
    "Softmax",
    "Tanh",
    "UnimplementedParameterAccessError",
    "UnknownComponentError",
]
