"""Tests for boundary buffers."""

from __future__ import annotations

import numpy as np
import pytest

from vectorlab.engine import buffers
from vectorlab.engine.buffers import LABEL_DTYPE, VECTOR_DTYPE, label_buffer, vector_buffer
from vectorlab.errors import BufferAllocationError, InvalidArgumentError


def test_vector_buffer_copies_rows() -> None:
    rows = [[1.0, 2.0], [3.5, 4.5]]

    with vector_buffer(rows, 2) as data:
        assert data.dtype == VECTOR_DTYPE
        assert data.shape == (2, 2)
        np.testing.assert_array_equal(data, np.asarray(rows, dtype=np.float32))


def test_vector_buffer_rejects_non_numeric_rows() -> None:
    with pytest.raises(InvalidArgumentError, match="row 1 does not contain 2 numbers"), vector_buffer(
        [[1.0, 2.0], ["a", "b"]],
        2,
    ):
        pytest.fail("buffer should not be yielded")


def test_label_buffer_uses_unsigned_labels() -> None:
    with label_buffer([3, 2**64 - 1]) as ids:
        assert ids.dtype == LABEL_DTYPE
        assert ids.tolist() == [3, 2**64 - 1]


def test_allocation_failure_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    """Out-of-memory during allocation becomes ``BufferAllocationError``."""

    def exhausted(*_args: object, **_kwargs: object) -> np.ndarray:
        raise MemoryError

    monkeypatch.setattr(buffers.np, "empty", exhausted)

    with pytest.raises(BufferAllocationError, match="boundary buffer"), label_buffer([1]):
        pytest.fail("buffer should not be yielded")
