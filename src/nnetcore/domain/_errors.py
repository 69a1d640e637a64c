"""
Structural and numerical exceptions for nnetcore.

Every condition raised from this module represents a programmer or
configuration error (mismatched layer widths, corrupted model files,
diverged parameters) rather than an expected runtime condition. The engine
validates eagerly and raises immediately; no operation attempts to roll back
a partially applied mutation.

All exceptions derive from `NnetError` so callers that want to report any
engine failure uniformly can catch a single type.
"""

from __future__ import annotations

from typing import Optional


class NnetError(RuntimeError):
    """
    Base class for all engine-level failures.
    """


class DimensionMismatchError(NnetError):
    """
    Raised when adjacent widths do not agree.

    This covers both structural mismatches (component `i` output width vs.
    component `i + 1` input width) and data mismatches (a matrix handed to a
    component whose column count differs from the component's input width).

    Attributes
    ----------
    output_dim : int
        Width produced by the upstream side.
    input_dim : int
        Width expected by the downstream side.
    index : Optional[int]
        Position of the downstream component, when known.
    """

    def __init__(
        self,
        output_dim: int,
        input_dim: int,
        *,
        index: Optional[int] = None,
        what: str = "Dimensionality mismatch!",
    ) -> None:
        """
        Initialize the DimensionMismatchError.

        Parameters
        ----------
        output_dim : int
            Width produced by the previous layer (or the data).
        input_dim : int
            Width expected by the current layer.
        index : Optional[int], optional
            Index of the current layer, if known.
        what : str, optional
            Leading description of the failure.
        """
        where = f" (component {index})" if index is not None else ""
        super().__init__(
            f"{what}{where} Previous layer output:{output_dim} "
            f"Current layer input:{input_dim}"
        )
        self.output_dim = int(output_dim)
        self.input_dim = int(input_dim)
        self.index = index


class BufferChainError(NnetError):
    """
    Raised when a buffer chain length drifts from `num_components() + 1`.
    """

    def __init__(self, name: str, length: int, expected: int) -> None:
        super().__init__(
            f"Buffer chain '{name}' has {length} slots, expected {expected}."
        )
        self.name = name
        self.length = int(length)
        self.expected = int(expected)


class ParameterExplosionError(NnetError):
    """
    Raised when the flattened parameter vector contains `nan` or `inf`.

    Attributes
    ----------
    kind : str
        Either ``"nan"`` or ``"inf"``.
    """

    def __init__(self, kind: str) -> None:
        if kind == "inf":
            msg = "'inf' in network parameters (weight explosion, try lower learning rate?)"
        else:
            msg = "'nan' in network parameters (try lower learning rate?)"
        super().__init__(msg)
        self.kind = kind


class ParameterCountError(NnetError):
    """
    Raised when parameter-vector bookkeeping does not land on `num_params()`.

    This is raised both for internal position drift while (de)flattening and
    for caller-supplied vectors of the wrong length.
    """

    def __init__(self, got: int, expected: int, *, what: str = "parameters") -> None:
        super().__init__(
            f"Parameter bookkeeping mismatch for {what}: got {got}, expected {expected}."
        )
        self.got = int(got)
        self.expected = int(expected)


class UnimplementedParameterAccessError(NnetError):
    """
    Raised when flat weight/gradient access is requested on an updatable
    component that does not implement it.

    Attributes
    ----------
    marker : str
        Stable marker of the offending component variant.
    """

    def __init__(self, marker: str) -> None:
        super().__init__(
            f"Unimplemented access to parameters of updatable component {marker}"
        )
        self.marker = marker


class MalformedStreamError(NnetError):
    """
    Raised when a persisted network or a prototype line cannot be parsed.
    """


class UnknownComponentError(MalformedStreamError):
    """
    Raised when a stream names a component marker with no registered class.
    """

    def __init__(self, marker: str, available: tuple[str, ...] = ()) -> None:
        avail = ", ".join(available) or "<none>"
        super().__init__(
            f"Unknown component marker {marker!r}. Available: {avail}"
        )
        self.marker = marker
