"""Boundary contract between the index layer and a search engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np

    Predicate = Callable[[int], bool]


@dataclass(frozen=True)
class EngineCounts:
    """Aggregate element accounting reported by the engine."""

    total: int
    deleted: int
    capacity: int

    @property
    def active(self) -> int:
        """Number of elements that are not tombstoned."""
        return self.total - self.deleted


@dataclass(frozen=True)
class EngineParams:
    """Structural parameters read back from a live engine."""

    dimension: int
    capacity: int
    graph_degree: int
    ef_construction: int


@dataclass(frozen=True)
class KnnBatch:
    """Flat k-NN output: ``count`` rows of ``k`` (label, distance) pairs, row-major."""

    k: int
    count: int
    labels: np.ndarray
    distances: np.ndarray


class SearchEngine(Protocol):
    """Protocol describing an approximate nearest-neighbour engine."""

    name: str

    def init(self) -> None:
        """Allocate the native index, loading persisted data when present."""
        ...

    def free(self) -> None:
        """Release the native index."""
        ...

    def insert(self, vectors: np.ndarray, labels: np.ndarray, *, replace_deleted: bool) -> None:
        """Insert ``vectors`` under ``labels``."""
        ...

    def delete(self, labels: np.ndarray) -> None:
        """Tombstone ``labels``."""
        ...

    def search(
        self,
        queries: np.ndarray,
        k: int,
        *,
        ef: int,
        predicate: Predicate | None = None,
    ) -> KnnBatch:
        """Return the ``k`` nearest eligible labels for each query row."""
        ...

    def resize(self, capacity: int) -> None:
        """Reallocate storage for ``capacity`` elements."""
        ...

    def persist(self) -> bool:
        """Flush pending changes; return ``True`` when anything was written."""
        ...

    def counts(self) -> EngineCounts:
        """Return total, deleted and capacity counts."""
        ...

    def list_labels(self, *, active_only: bool) -> list[int]:
        """Return registered labels, optionally excluding tombstones."""
        ...

    def fetch(self, labels: np.ndarray) -> tuple[list[int], np.ndarray]:
        """Return the resolvable labels and their stored vectors."""
        ...

    def describe(self) -> EngineParams:
        """Return the live structural parameters."""
        ...
