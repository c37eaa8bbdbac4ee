"""Tests for capacity growth planning."""

from __future__ import annotations

import pytest

from vectorlab.capacity import grown_capacity, required_capacity, validate_resize
from vectorlab.errors import InvalidArgumentError


@pytest.mark.parametrize(
    ("capacity", "factor", "expected"),
    [
        (2, 1.2, 3),
        (3, 1.2, 4),
        (5, 1.2, 6),
        (10, 1.5, 15),
        (1000, 1.2, 1200),
        (1, 1.01, 2),
    ],
)
def test_grown_capacity(capacity: int, factor: float, expected: int) -> None:
    assert grown_capacity(capacity, factor) == expected


def test_grown_capacity_rejects_non_growing_factor() -> None:
    with pytest.raises(InvalidArgumentError, match="resize factor must be greater than 1.0"):
        grown_capacity(10, 1.0)


def test_required_capacity_when_batch_fits() -> None:
    assert required_capacity(current=3, capacity=5, incoming=2, resize_factor=1.2) is None


def test_required_capacity_grows_by_factor() -> None:
    assert required_capacity(current=2, capacity=2, incoming=1, resize_factor=1.2) == 3


def test_required_capacity_covers_large_batches() -> None:
    """A batch larger than one growth step gets room for all of it."""
    assert required_capacity(current=2, capacity=2, incoming=10, resize_factor=1.2) == 12


def test_validate_resize() -> None:
    assert validate_resize(10, 10) == 10
    assert validate_resize(10, 20) == 20
    with pytest.raises(InvalidArgumentError, match="requested 5, current 10"):
        validate_resize(10, 5)
