"""Exception hierarchy for index operations."""

from __future__ import annotations


class VectorLabError(Exception):
    """Base class for every failure raised by the index layer."""


class InvalidArgumentError(VectorLabError, ValueError):
    """A caller-supplied argument failed validation."""


class DuplicateLabelError(InvalidArgumentError):
    """A batch contains the same label more than once."""


class DimensionMismatchError(InvalidArgumentError):
    """A vector does not match the index dimension."""


class PermissionDeniedError(VectorLabError, PermissionError):
    """A mutating operation was attempted on a read-only index."""


class AlreadyExistsError(VectorLabError, FileExistsError):
    """The persistence location for a new index already exists."""


class NotFoundError(VectorLabError, FileNotFoundError):
    """The persistence location for an existing index is missing."""


class LabelNotFoundError(VectorLabError, KeyError):
    """One or more requested labels are not present in the index."""

    def __init__(self, labels: list[int]) -> None:
        """Record the labels that could not be resolved."""
        self.labels = labels
        super().__init__(f"labels not found: {labels}")

    def __str__(self) -> str:
        return str(self.args[0])


class CapacityExceededError(VectorLabError):
    """The engine could not grow to the requested capacity."""


class EngineError(VectorLabError, RuntimeError):
    """The wrapped search engine reported a failure."""


class IndexClosedError(VectorLabError, RuntimeError):
    """An operation was attempted after the index was closed."""


class BufferAllocationError(VectorLabError, MemoryError):
    """A boundary buffer could not be allocated."""
