"""Capacity planning for index growth."""

from __future__ import annotations

import math
from decimal import Decimal

from vectorlab.errors import InvalidArgumentError


def grown_capacity(capacity: int, resize_factor: float) -> int:
    """Return ``ceil(capacity * resize_factor)``, always larger than ``capacity``.

    The product is computed in decimal so that e.g. ``5 * 1.2`` yields 6.
    """
    if resize_factor <= 1.0:
        message = f"resize factor must be greater than 1.0, received {resize_factor}"
        raise InvalidArgumentError(message)
    scaled = Decimal(capacity) * Decimal(str(resize_factor))
    return max(math.ceil(scaled), capacity + 1)


def required_capacity(current: int, capacity: int, incoming: int, resize_factor: float) -> int | None:
    """Return the capacity needed to insert ``incoming`` items, or ``None`` if it fits.

    Growth happens once per batch: the grown capacity is ``ceil(capacity *
    resize_factor)`` unless the batch alone needs more than that.
    """
    needed = current + incoming
    if needed <= capacity:
        return None
    return max(grown_capacity(capacity, resize_factor), needed)


def validate_resize(current_capacity: int, new_capacity: int) -> int:
    """Ensure an explicit resize never shrinks the index."""
    if new_capacity < current_capacity:
        message = (
            "new capacity is less than current capacity: "
            f"requested {new_capacity}, current {current_capacity}"
        )
        raise InvalidArgumentError(message)
    return new_capacity
