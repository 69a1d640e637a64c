"""
Domain layer: component contracts, variant tags, training options and the
error hierarchy. Nothing here depends on the infrastructure layer.
"""

from ._component import (
    IComponent,
    IFlatParameterAccess,
    INestedNnetInfo,
    IRetentionControl,
    ISequenceLengthAware,
    IStreamResettable,
    IUpdatableComponent,
)
from ._component_type import ComponentType
from ._errors import (
    BufferChainError,
    DimensionMismatchError,
    MalformedStreamError,
    NnetError,
    ParameterCountError,
    ParameterExplosionError,
    UnimplementedParameterAccessError,
    UnknownComponentError,
)
from ._train_options import NnetTrainOptions
