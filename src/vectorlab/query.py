"""Assembly of k-NN requests and reconstruction of their results."""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING

from vectorlab.engine.buffers import vector_buffer
from vectorlab.errors import EngineError, InvalidArgumentError
from vectorlab.models import QueryHit, QueryResult
from vectorlab.vectors import as_rows, ensure_dimension

if TYPE_CHECKING:
    from collections.abc import Callable

    from vectorlab.engine.protocols import KnnBatch, SearchEngine
    from vectorlab.models import QueryRequest


class QueryDispatcher:
    """Validate a ``QueryRequest``, run it through the engine and reshape the output."""

    def __init__(self, default_ef: int) -> None:
        """Initialise the dispatcher with the index's default search breadth."""
        self.default_ef = default_ef

    def dispatch(self, engine: SearchEngine | None, request: QueryRequest, *, dimension: int) -> QueryResult:
        """Execute ``request``; ``engine`` is ``None`` while the index is still empty."""
        start = time.perf_counter()
        if request.k <= 0:
            message = f"k must be positive, received {request.k}"
            raise InvalidArgumentError(message)
        ef = self.default_ef if request.ef_search is None else request.ef_search
        if ef <= 0:
            message = f"ef_search must be positive, received {ef}"
            raise InvalidArgumentError(message)
        if request.predicate is not None and not callable(request.predicate):
            message = "predicate must be callable"
            raise InvalidArgumentError(message)
        rows = as_rows(request.vectors)
        ensure_dimension(rows, dimension)

        eligible = 0 if engine is None else eligible_count(engine, request.predicate)
        k = min(request.k, eligible)
        meta = {"k": request.k, "effective_k": k, "ef": ef}
        if engine is None or k == 0:
            latency_ms = int((time.perf_counter() - start) * 1000)
            return QueryResult(hits=[[] for _ in range(len(rows))], latency_ms=latency_ms, meta=meta)

        with vector_buffer(rows, dimension) as queries:
            batch = engine.search(queries, k, ef=ef, predicate=request.predicate)
        hits = reshape_batch(batch)
        latency_ms = int((time.perf_counter() - start) * 1000)
        return QueryResult(hits=hits, latency_ms=latency_ms, meta=meta)


def eligible_count(engine: SearchEngine, predicate: Callable[[int], bool] | None) -> int:
    """Return how many active labels a query may return."""
    if predicate is None:
        return engine.counts().active
    return sum(1 for label in engine.list_labels(active_only=True) if predicate(label))


def reshape_batch(batch: KnnBatch) -> list[list[QueryHit]]:
    """Split a flat ``count * k`` batch into one ordered row per query.

    Entries with a non-finite distance are engine padding and are dropped.
    """
    expected = batch.count * batch.k
    if len(batch.labels) != expected or len(batch.distances) != expected:
        message = (
            "engine returned a malformed batch: "
            f"expected {expected} pairs, received {len(batch.labels)} labels "
            f"and {len(batch.distances)} distances"
        )
        raise EngineError(message)
    rows: list[list[QueryHit]] = []
    for row in range(batch.count):
        offset = row * batch.k
        hits = [
            QueryHit(label=int(label), distance=float(distance))
            for label, distance in zip(
                batch.labels[offset : offset + batch.k],
                batch.distances[offset : offset + batch.k],
                strict=True,
            )
            if math.isfinite(float(distance))
        ]
        hits.sort(key=lambda hit: hit.distance)
        rows.append(hits)
    return rows
