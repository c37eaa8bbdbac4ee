"""Shape checks for batches of vectors."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from vectorlab.errors import DimensionMismatchError, InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Sequence

    VectorRows = Sequence[Sequence[float]] | np.ndarray


def as_rows(vectors: VectorRows) -> VectorRows:
    """Return ``vectors`` as an indexable batch of rows."""
    if isinstance(vectors, np.ndarray):
        expected_ndim = 2
        if vectors.ndim == 1:
            return vectors.reshape(1, -1)
        if vectors.ndim != expected_ndim:
            message = f"expected 2d matrix, received shape {vectors.shape}"
            raise InvalidArgumentError(message)
        return vectors
    return list(vectors)


def ensure_dimension(rows: VectorRows, dimension: int) -> int:
    """Check every row against ``dimension`` and return the batch dimension.

    A ``dimension`` of 0 means the index has not been fixed yet; the first row
    then decides it.
    """
    if len(rows) == 0:
        message = "vectors are empty"
        raise InvalidArgumentError(message)
    expected = dimension or _row_length(rows[0], 0)
    if expected == 0:
        message = "vectors must have at least one component"
        raise InvalidArgumentError(message)
    for position, row in enumerate(rows):
        length = _row_length(row, position)
        if length != expected:
            message = f"dimension mismatch, expected {expected}, got {length} at row {position}"
            raise DimensionMismatchError(message)
    return expected


def _row_length(row: object, position: int) -> int:
    try:
        return len(row)  # type: ignore[arg-type]
    except TypeError as exc:
        message = f"vector at row {position} is not a sequence of floats"
        raise InvalidArgumentError(message) from exc
