"""
Domain-level structural typing for numeric buffers.

`MatrixLike` describes the part of a NumPy ``ndarray`` that the component
contracts rely on (shape and element access), without importing NumPy into
the domain layer. Infrastructure code passes real ``numpy.ndarray`` objects.
"""

from __future__ import annotations

from typing import Any, Protocol, Tuple, runtime_checkable


@runtime_checkable
class MatrixLike(Protocol):
    """
    Structural interface for 2-D activation/gradient buffers and 1-D
    parameter vectors.
    """

    @property
    def shape(self) -> Tuple[int, ...]:
        """Buffer shape, ``(rows, cols)`` for matrices, ``(dim,)`` for vectors."""
        ...

    @property
    def ndim(self) -> int:
        """Number of axes."""
        ...

    @property
    def size(self) -> int:
        """Total number of elements."""
        ...

    def __getitem__(self, key: Any) -> Any: ...
