"""
Built-in component variants.

Importing this package registers every concrete component with the
component factory via import side effects, so markers such as
``<AffineTransform>`` resolve in `read_component` / `init_component`.
"""

from ._registry import (
    component_class,
    init_component,
    new_component,
    read_component,
    register_component,
    registered_markers,
)
from ._affine_transform import AffineTransform
from ._activations import Sigmoid, Softmax, Tanh
from ._dropout import Dropout
from ._lstm_projected_streams import BLstmProjectedStreams, LstmProjectedStreams
from ._parallel_component import ParallelComponent

__all__ = [
    "AffineTransform",
    "BLstmProjectedStreams",
    "Dropout",
    "LstmProjectedStreams",
    "ParallelComponent",
    "Sigmoid",
    "Softmax",
    "Tanh",
    "component_class",
    "init_component",
    "new_component",
    "read_component",
    "register_component",
    "registered_markers",
]
