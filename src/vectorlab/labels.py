"""Label validation applied before any batch reaches the engine."""

from __future__ import annotations

from numbers import Integral
from typing import TYPE_CHECKING

from vectorlab.errors import DuplicateLabelError, InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Iterable

MAX_LABEL = 2**64 - 1


def coerce_label(value: object) -> int:
    """Return ``value`` as a label, rejecting non-integers and out-of-range values."""
    if isinstance(value, bool) or not isinstance(value, Integral):
        message = f"label must be an integer, received {value!r}"
        raise InvalidArgumentError(message)
    label = int(value)
    if label < 0 or label > MAX_LABEL:
        message = f"label out of range [0, 2**64): {label}"
        raise InvalidArgumentError(message)
    return label


def ensure_unique_labels(labels: Iterable[object]) -> list[int]:
    """Validate a batch of labels and return them as plain integers.

    Only uniqueness within the batch is checked; whether a label is already
    registered is left to the engine.
    """
    seen: set[int] = set()
    result: list[int] = []
    for value in labels:
        label = coerce_label(value)
        if label in seen:
            message = f"labels are not unique: {label} appears more than once"
            raise DuplicateLabelError(message)
        seen.add(label)
        result.append(label)
    return result
