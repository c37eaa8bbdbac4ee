"""Distance spaces supported by the index."""

from __future__ import annotations

from enum import Enum

from vectorlab.errors import InvalidArgumentError


class Space(str, Enum):
    """Logical similarity space of an index."""

    L2 = "l2"
    IP = "ip"
    COSINE = "cosine"


# Integer codes used by older configuration records.
_LEGACY_CODES: dict[int, Space] = {0: Space.L2, 1: Space.IP, 2: Space.COSINE}

_ENGINE_SPACES: dict[Space, str] = {
    Space.L2: "l2",
    Space.IP: "ip",
    Space.COSINE: "cosine",
}


def parse_space(value: Space | str | int) -> Space:
    """Return the ``Space`` for ``value``, accepting names and legacy codes."""
    if isinstance(value, Space):
        return value
    if isinstance(value, bool):
        message = f"invalid space: {value!r}"
        raise InvalidArgumentError(message)
    if isinstance(value, int):
        try:
            return _LEGACY_CODES[value]
        except KeyError as exc:
            message = f"invalid space code: {value}"
            raise InvalidArgumentError(message) from exc
    normalised = str(value).strip().lower()
    aliases = {"euclidean": Space.L2, "inner_product": Space.IP, "innerproduct": Space.IP}
    if normalised in aliases:
        return aliases[normalised]
    try:
        return Space(normalised)
    except ValueError as exc:
        message = f"invalid space: {value!r}"
        raise InvalidArgumentError(message) from exc


def engine_space(space: Space | str | int) -> str:
    """Translate a logical space into the engine's space identifier."""
    return _ENGINE_SPACES[parse_space(space)]
