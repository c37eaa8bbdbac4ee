"""Data models for query requests and results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    import numpy as np


def _empty_hit_rows() -> list[list[QueryHit]]:
    """Return an empty list of per-query hit rows."""
    return []


class QueryHit(BaseModel):
    """A single neighbour of a query vector."""

    label: int
    distance: float


class QueryResult(BaseModel):
    """Nearest neighbours for every query vector, nearest first.

    Ties between equal distances keep the engine's traversal order, which is
    not stable across engine versions.
    """

    hits: list[list[QueryHit]] = Field(default_factory=_empty_hit_rows)
    latency_ms: int = 0
    meta: dict[str, Any] = Field(default_factory=dict)

    def labels(self) -> list[list[int]]:
        """Return only the labels of each row."""
        return [[hit.label for hit in row] for row in self.hits]

    def distances(self) -> list[list[float]]:
        """Return only the distances of each row."""
        return [[hit.distance for hit in row] for row in self.hits]


@dataclass(frozen=True)
class QueryRequest:
    """A k-NN request scoped to exactly one engine call.

    ``predicate`` receives a label and returns ``True`` to keep it eligible.
    """

    vectors: Sequence[Sequence[float]] | np.ndarray
    k: int
    ef_search: int | None = None
    predicate: Callable[[int], bool] | None = None
