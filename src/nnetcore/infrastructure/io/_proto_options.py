"""
Prototype option parsing.

Prototype lines carry ``<Key> value`` pairs after the component widths. The
`read_options` helper consumes them from a text stream according to a
per-component table of converters, rejecting unknown keys.
"""

from __future__ import annotations

from typing import Any, BinaryIO, Callable, Dict

from ...domain._errors import MalformedStreamError
from ._token_io import at_eof, read_token


def read_options(
    stream: BinaryIO, converters: Dict[str, Callable[[str], Any]], *, owner: str
) -> Dict[str, Any]:
    """
    Consume every remaining ``<Key> value`` pair on a prototype line.

    Parameters
    ----------
    stream : BinaryIO
        Text-encoded stream positioned after the widths.
    converters : Dict[str, Callable[[str], Any]]
        Mapping from option token (e.g. ``"<ParamStddev>"``) to a converter
        applied to the value word.
    owner : str
        Marker of the component being initialized, for error messages.

    Returns
    -------
    Dict[str, Any]
        Parsed options keyed by token. Options not present are omitted.

    Raises
    ------
    MalformedStreamError
        On unknown options, missing values, or values that fail conversion.
    """
    out: Dict[str, Any] = {}
    while not at_eof(stream):
        key = read_token(stream, False)
        if key not in converters:
            raise MalformedStreamError(
                f"Unknown token {key!r} in prototype of {owner}. "
                f"Accepted: {', '.join(sorted(converters)) or '<none>'}"
            )
        if at_eof(stream):
            raise MalformedStreamError(f"Missing value for {key} in prototype of {owner}.")
        word = read_token(stream, False)
        try:
            out[key] = converters[key](word)
        except ValueError as e:
            raise MalformedStreamError(
                f"Bad value {word!r} for {key} in prototype of {owner}."
            ) from e
    return out
