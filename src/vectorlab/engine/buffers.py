"""Scoped buffers handed across the engine boundary.

Each buffer is allocated to the exact element count of one call, populated
row by row, and dropped when the ``with`` block exits, whether the call
succeeded or raised.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

import numpy as np

from vectorlab.errors import BufferAllocationError, InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

VECTOR_DTYPE = np.float32
LABEL_DTYPE = np.uint64


def _allocate(shape: tuple[int, ...], dtype: type[np.generic]) -> np.ndarray:
    try:
        return np.empty(shape, dtype=dtype)
    except MemoryError as exc:
        message = f"failed to allocate boundary buffer of shape {shape}"
        raise BufferAllocationError(message) from exc


@contextmanager
def vector_buffer(rows: Sequence[Sequence[float]] | np.ndarray, dimension: int) -> Iterator[np.ndarray]:
    """Yield a ``(len(rows), dimension)`` float32 copy of ``rows``."""
    buffer = _allocate((len(rows), dimension), VECTOR_DTYPE)
    try:
        for position, row in enumerate(rows):
            try:
                buffer[position, :] = row
            except (TypeError, ValueError) as exc:
                message = f"vector at row {position} does not contain {dimension} numbers"
                raise InvalidArgumentError(message) from exc
        yield buffer
    finally:
        del buffer


@contextmanager
def label_buffer(labels: Sequence[int]) -> Iterator[np.ndarray]:
    """Yield a uint64 copy of ``labels``."""
    buffer = _allocate((len(labels),), LABEL_DTYPE)
    try:
        for position, label in enumerate(labels):
            buffer[position] = label
        yield buffer
    finally:
        del buffer
