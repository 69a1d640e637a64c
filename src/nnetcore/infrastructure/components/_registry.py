"""
Component factory.

Concrete component classes register themselves under their variant tag via
the `register_component` decorator. The factory then builds components from
two sources:

- `read_component`: a persisted network stream (text or binary), returning
  None at the end-of-network token
- `init_component`: a single prototype line such as
  ``<AffineTransform> <InputDim> 10 <OutputDim> 5 <ParamStddev> 0.1``

Both paths first construct the component from its widths alone and then let
the class consume its own data (`_read_data` / `_init_data`).
"""

from __future__ import annotations

import io
from typing import BinaryIO, Callable, Dict, Optional, Type, TypeVar

from ...domain._component_type import ComponentType
from ...domain._errors import MalformedStreamError, UnknownComponentError
from .._component import Component
from ..io._token_io import at_eof, expect_token, read_int, read_token

_COMPONENT_REGISTRY: Dict[ComponentType, Type[Component]] = {}

C = TypeVar("C", bound=Type[Component])


def register_component(
    component_type: ComponentType, *, overwrite: bool = False
) -> Callable[[C], C]:
    """
    Decorator registering a `Component` subclass under `component_type`.

    The decorated class also gets `TYPE` set to `component_type`.

    Raises
    ------
    ValueError
        If the tag is already registered and `overwrite` is False.
    """

    def deco(cls: C) -> C:
        if not overwrite and component_type in _COMPONENT_REGISTRY:
            raise ValueError(f"Component already registered: {component_type.marker}")
        cls.TYPE = component_type
        _COMPONENT_REGISTRY[component_type] = cls
        return cls

    return deco


def registered_markers() -> tuple[str, ...]:
    """Return registered markers (sorted)."""
    return tuple(sorted(t.marker for t in _COMPONENT_REGISTRY))


def component_class(marker: str) -> Type[Component]:
    """
    Resolve a marker into its registered class.

    Raises
    ------
    UnknownComponentError
        If the marker is unknown or has no registered class.
    """
    try:
        return _COMPONENT_REGISTRY[ComponentType.from_marker(marker)]
    except (ValueError, KeyError) as e:
        raise UnknownComponentError(marker, registered_markers()) from e


def new_component(marker: str, input_dim: int, output_dim: int) -> Component:
    """Construct a default-initialized component from its widths."""
    return component_class(marker)(input_dim, output_dim)


def read_component(stream: BinaryIO, binary: bool) -> Optional[Component]:
    """
    Read one component from a persisted network.

    A leading ``<Nnet>`` token is skipped. Returns None when the
    ``</Nnet>`` terminator is reached.

    Raises
    ------
    MalformedStreamError
        If the stream ends before the terminator or is otherwise malformed.
    UnknownComponentError
        If a marker has no registered class.
    """
    token = read_token(stream, binary)
    if token == "<Nnet>":
        token = read_token(stream, binary)
    if token == "</Nnet>":
        return None

    cls = component_class(token)
    output_dim = read_int(stream, binary)
    input_dim = read_int(stream, binary)
    try:
        comp = cls(input_dim, output_dim)
    except ValueError as e:
        raise MalformedStreamError(f"Cannot build {token}: {e}") from e
    comp._read_data(stream, binary)
    return comp


def init_component(conf_line: str) -> Component:
    """
    Build a freshly initialized component from one prototype line.

    The line has the form::

        <Marker> <InputDim> N <OutputDim> M [<Option> value ...]

    Raises
    ------
    MalformedStreamError
        If the line is malformed or carries options the component does not
        consume.
    UnknownComponentError
        If the marker has no registered class.
    """
    stream = io.BytesIO(conf_line.encode("ascii"))
    marker = read_token(stream, False)
    cls = component_class(marker)

    expect_token(stream, False, "<InputDim>")
    input_dim = read_int(stream, False)
    expect_token(stream, False, "<OutputDim>")
    output_dim = read_int(stream, False)

    try:
        comp = cls(input_dim, output_dim)
    except ValueError as e:
        raise MalformedStreamError(f"Cannot build {marker}: {e}") from e
    comp._init_data(stream)

    if not at_eof(stream):
        leftover = stream.read().decode("ascii").strip()
        raise MalformedStreamError(
            f"Unconsumed prototype options for {marker}: {leftover!r}"
        )
    return comp
