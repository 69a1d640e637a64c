"""
Token-level reading and writing of persisted networks.

Networks are stored as a sequence of tokens (``<Nnet>``, component markers,
option keys) interleaved with integers, floats, vectors and matrices. Every
helper takes a `binary` flag selecting one of two encodings:

Text encoding
-------------
- Tokens, integers and floats are ASCII words followed by a single space.
- Vectors are written as ``[ v0 v1 ... ]``.
- Matrices are written as ``[`` followed by one line per row and a closing
  ``]`` on the last row (``[ ]`` for an empty matrix).

Binary encoding
---------------
- Tokens are ASCII followed by a single space.
- Integers and floats carry a one-byte size prefix (always 4) followed by
  the little-endian ``int32`` / ``float32`` payload.
- Vectors are ``FV `` + size-prefixed length + raw ``float32`` data.
- Matrices are ``FM `` + size-prefixed rows and cols + raw row-major
  ``float32`` data.

All streams are byte streams (``io.BytesIO`` or files opened in ``"rb"`` /
``"wb"`` mode). Array payloads are produced with ``ndarray.tobytes`` and
restored with ``np.frombuffer`` followed by a copy, so restored arrays own
their memory.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Optional

import numpy as np

from ...domain._errors import MalformedStreamError

BINARY_HEADER = b"\x00B"

_WHITESPACE = b" \t\n\r\f\v"
_SIZE_PREFIX = b"\x04"


# ----------------------------------------------------------------------
# Low-level byte helpers
# ----------------------------------------------------------------------
def _read_exact(stream: BinaryIO, n: int, what: str) -> bytes:
    data = stream.read(n)
    if data is None or len(data) != n:
        raise MalformedStreamError(
            f"Unexpected end of stream while reading {what} "
            f"(wanted {n} bytes, got {0 if not data else len(data)})."
        )
    return data


def _skip_whitespace(stream: BinaryIO) -> bytes:
    """Consume whitespace; return the first non-whitespace byte (or b"")."""
    while True:
        c = stream.read(1)
        if not c or c not in _WHITESPACE:
            return c


def _read_word(stream: BinaryIO) -> str:
    """Read a whitespace-delimited ASCII word, consuming one trailing byte."""
    c = _skip_whitespace(stream)
    if not c:
        raise MalformedStreamError("Unexpected end of stream while reading a token.")
    buf = bytearray(c)
    while True:
        c = stream.read(1)
        if not c or c in _WHITESPACE:
            break
        buf.extend(c)
    try:
        return buf.decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedStreamError(f"Non-ASCII token {bytes(buf)!r}.") from e


def at_eof(stream: BinaryIO) -> bool:
    """
    Return True if only whitespace remains in `stream`.

    The stream position is left unchanged.
    """
    pos = stream.tell()
    c = _skip_whitespace(stream)
    stream.seek(pos)
    return not c


# ----------------------------------------------------------------------
# Tokens
# ----------------------------------------------------------------------
def write_token(stream: BinaryIO, binary: bool, token: str) -> None:
    """
    Write a single token.

    Raises
    ------
    ValueError
        If the token is empty or contains whitespace.
    """
    if not token or any(ch.isspace() for ch in token):
        raise ValueError(f"Invalid token: {token!r}")
    stream.write(token.encode("ascii") + b" ")


def read_token(stream: BinaryIO, binary: bool) -> str:
    """
    Read a single token.

    In both encodings a token is ASCII terminated by whitespace; the binary
    flag is accepted for symmetry with the other helpers.
    """
    return _read_word(stream)


def peek_token(stream: BinaryIO, binary: bool) -> Optional[str]:
    """
    Return the next token without consuming it, or None at end of stream.
    """
    pos = stream.tell()
    try:
        if at_eof(stream):
            return None
        return read_token(stream, binary)
    finally:
        stream.seek(pos)


def expect_token(stream: BinaryIO, binary: bool, token: str) -> None:
    """
    Consume the next token and verify it equals `token`.

    Raises
    ------
    MalformedStreamError
        If a different token is found.
    """
    got = read_token(stream, binary)
    if got != token:
        raise MalformedStreamError(f"Expected token {token!r}, got {got!r}.")


# ----------------------------------------------------------------------
# Scalars
# ----------------------------------------------------------------------
def write_int(stream: BinaryIO, binary: bool, value: int) -> None:
    if binary:
        stream.write(_SIZE_PREFIX + struct.pack("<i", int(value)))
    else:
        stream.write(f"{int(value)} ".encode("ascii"))


def read_int(stream: BinaryIO, binary: bool) -> int:
    if binary:
        size = _read_exact(stream, 1, "integer size")
        if size != _SIZE_PREFIX:
            raise MalformedStreamError(f"Unexpected integer size byte {size!r}.")
        return struct.unpack("<i", _read_exact(stream, 4, "integer"))[0]
    word = _read_word(stream)
    try:
        return int(word)
    except ValueError as e:
        raise MalformedStreamError(f"Expected an integer, got {word!r}.") from e


def write_float(stream: BinaryIO, binary: bool, value: float) -> None:
    if binary:
        stream.write(_SIZE_PREFIX + struct.pack("<f", float(value)))
    else:
        stream.write(f"{float(value):.9g} ".encode("ascii"))


def read_float(stream: BinaryIO, binary: bool) -> float:
    if binary:
        size = _read_exact(stream, 1, "float size")
        if size != _SIZE_PREFIX:
            raise MalformedStreamError(f"Unexpected float size byte {size!r}.")
        return struct.unpack("<f", _read_exact(stream, 4, "float"))[0]
    word = _read_word(stream)
    try:
        return float(word)
    except ValueError as e:
        raise MalformedStreamError(f"Expected a float, got {word!r}.") from e


# ----------------------------------------------------------------------
# Arrays
# ----------------------------------------------------------------------
def _format_row(row: np.ndarray) -> str:
    return " ".join(f"{float(v):.9g}" for v in row)


def write_vector(stream: BinaryIO, binary: bool, vec: np.ndarray) -> None:
    """Write a 1-D float32 vector."""
    v = np.asarray(vec, dtype=np.float32).reshape(-1)
    if binary:
        write_token(stream, binary, "FV")
        write_int(stream, binary, v.shape[0])
        stream.write(v.astype("<f4", copy=False).tobytes(order="C"))
    else:
        body = _format_row(v)
        stream.write(f" [ {body} ]\n".encode("ascii") if body else b" [ ]\n")


def read_vector(stream: BinaryIO, binary: bool) -> np.ndarray:
    """Read a 1-D float32 vector written by `write_vector`."""
    if binary:
        expect_token(stream, binary, "FV")
        dim = read_int(stream, binary)
        if dim < 0:
            raise MalformedStreamError(f"Negative vector dimension {dim}.")
        raw = _read_exact(stream, 4 * dim, "vector data")
        return np.array(np.frombuffer(raw, dtype="<f4"), dtype=np.float32, copy=True)

    expect_token(stream, binary, "[")
    values: list[float] = []
    while True:
        word = _read_word(stream)
        if word == "]":
            break
        try:
            values.append(float(word))
        except ValueError as e:
            raise MalformedStreamError(f"Bad vector element {word!r}.") from e
    return np.asarray(values, dtype=np.float32)


def write_matrix(stream: BinaryIO, binary: bool, mat: np.ndarray) -> None:
    """Write a 2-D float32 matrix."""
    m = np.asarray(mat, dtype=np.float32)
    if m.ndim != 2:
        raise ValueError(f"write_matrix expects a 2D array, got shape {m.shape}")
    if binary:
        write_token(stream, binary, "FM")
        write_int(stream, binary, m.shape[0])
        write_int(stream, binary, m.shape[1])
        stream.write(np.ascontiguousarray(m, dtype="<f4").tobytes(order="C"))
        return

    if m.size == 0:
        stream.write(b" [ ]\n")
        return
    lines = [" [ "]
    for r in range(m.shape[0]):
        lines.append("  " + _format_row(m[r]))
    lines[-1] += " ]"
    stream.write(("\n".join(lines) + "\n").encode("ascii"))


def read_matrix(stream: BinaryIO, binary: bool) -> np.ndarray:
    """Read a 2-D float32 matrix written by `write_matrix`."""
    if binary:
        expect_token(stream, binary, "FM")
        rows = read_int(stream, binary)
        cols = read_int(stream, binary)
        if rows < 0 or cols < 0:
            raise MalformedStreamError(f"Negative matrix shape ({rows}, {cols}).")
        raw = _read_exact(stream, 4 * rows * cols, "matrix data")
        arr = np.frombuffer(raw, dtype="<f4").reshape(rows, cols)
        return np.array(arr, dtype=np.float32, copy=True)

    expect_token(stream, binary, "[")
    rows_out: list[list[float]] = []
    rest = stream.readline().decode("ascii").strip()
    if rest.startswith("]"):
        return np.zeros((0, 0), dtype=np.float32)
    if rest:
        raise MalformedStreamError(f"Unexpected data after '[': {rest!r}.")

    while True:
        raw_line = stream.readline()
        if not raw_line:
            raise MalformedStreamError("Unexpected end of stream inside a matrix.")
        line = raw_line.decode("ascii").strip()
        if not line:
            continue
        closing = line.endswith("]")
        if closing:
            line = line[:-1].strip()
        try:
            row = [float(w) for w in line.split()]
        except ValueError as e:
            raise MalformedStreamError(f"Bad matrix row {line!r}.") from e
        if row:
            if rows_out and len(row) != len(rows_out[0]):
                raise MalformedStreamError(
                    f"Ragged matrix: row of {len(row)} values after rows of {len(rows_out[0])}."
                )
            rows_out.append(row)
        if closing:
            break

    if not rows_out:
        return np.zeros((0, 0), dtype=np.float32)
    return np.asarray(rows_out, dtype=np.float32)
