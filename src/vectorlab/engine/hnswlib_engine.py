"""hnswlib-backed search engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import hnswlib
import numpy as np
import structlog

from vectorlab.engine.protocols import EngineCounts, EngineParams, KnnBatch, SearchEngine
from vectorlab.errors import CapacityExceededError, EngineError
from vectorlab.spaces import engine_space

if TYPE_CHECKING:
    from vectorlab.config import IndexConfig
    from vectorlab.engine.protocols import Predicate

logger = structlog.get_logger(__name__)

INDEX_FILE_NAME = "index.bin"
TOMBSTONE_FILE_NAME = "tombstones.json"
RANDOM_SEED = 100


class HnswlibEngine(SearchEngine):
    """HNSW graph index with tombstone accounting kept alongside it.

    hnswlib does not report which labels are marked deleted, so the engine
    tracks them itself and stores them in ``tombstones.json`` next to the
    binary index.
    """

    def __init__(self, config: IndexConfig) -> None:
        """Record the configuration; the native index is built by ``init``."""
        self.name = "hnswlib"
        self._config = config
        self._index: hnswlib.Index | None = None
        self._tombstones: set[int] = set()
        self._dirty = False

    def init(self) -> None:
        """Build an empty index or load the one persisted at the configured location."""
        if self._index is not None:
            return
        config = self._config
        if config.dimension <= 0:
            message = "cannot initialise engine before the dimension is known"
            raise EngineError(message)
        index = hnswlib.Index(space=engine_space(config.space), dim=config.dimension)
        data_path = self._data_path()
        try:
            if data_path is not None and data_path.is_file():
                index.load_index(
                    str(data_path),
                    max_elements=config.max_elements,
                    allow_replace_deleted=config.allow_replace_deleted,
                )
                self._tombstones = self._load_tombstones(index)
                logger.debug("engine.loaded", path=str(data_path), elements=index.get_current_count())
            else:
                index.init_index(
                    max_elements=config.max_elements,
                    M=config.graph_degree,
                    ef_construction=config.ef_construction,
                    random_seed=RANDOM_SEED,
                    allow_replace_deleted=config.allow_replace_deleted,
                )
                self._dirty = data_path is not None
        except RuntimeError as exc:
            raise EngineError(str(exc)) from exc
        index.set_ef(config.ef_search)
        index.set_num_threads(config.num_threads)
        self._index = index

    def free(self) -> None:
        """Drop the native index."""
        self._index = None
        self._tombstones = set()

    def insert(self, vectors: np.ndarray, labels: np.ndarray, *, replace_deleted: bool) -> None:
        """Insert a batch; re-added or replaced tombstones are reconciled afterwards.

        With slot replacement on, hnswlib would move a re-added tombstoned
        label into whichever deleted slot it picks and orphan the label's own
        slot. Such labels are unmarked and updated in place instead.
        """
        index = self._require()
        fresh_vectors, fresh_labels = vectors, labels
        try:
            if replace_deleted and self._tombstones:
                revived = np.fromiter(
                    (int(label) in self._tombstones for label in labels),
                    dtype=bool,
                    count=len(labels),
                )
                if revived.any():
                    for label in labels[revived]:
                        index.unmark_deleted(int(label))
                    index.add_items(
                        vectors[revived],
                        labels[revived],
                        num_threads=self._config.num_threads,
                        replace_deleted=False,
                    )
                    fresh_vectors, fresh_labels = vectors[~revived], labels[~revived]
            if len(fresh_labels):
                index.add_items(
                    fresh_vectors,
                    fresh_labels,
                    num_threads=self._config.num_threads,
                    replace_deleted=replace_deleted,
                )
        except RuntimeError as exc:
            raise EngineError(str(exc)) from exc
        finally:
            self._dirty = True
            self._reconcile_tombstones(index, labels, replaced=replace_deleted)

    def delete(self, labels: np.ndarray) -> None:
        """Mark each label deleted, stopping at the first engine failure."""
        index = self._require()
        for value in labels:
            label = int(value)
            try:
                index.mark_deleted(label)
            except RuntimeError as exc:
                raise EngineError(str(exc)) from exc
            self._tombstones.add(label)
            self._dirty = True

    def search(
        self,
        queries: np.ndarray,
        k: int,
        *,
        ef: int,
        predicate: Predicate | None = None,
    ) -> KnnBatch:
        """Run a k-NN query with a per-call ``ef`` and optional label predicate."""
        index = self._require()
        # The predicate is a Python callable; keep the traversal on one thread.
        num_threads = 1 if predicate is not None else self._config.num_threads
        index.set_ef(ef)
        try:
            labels, distances = index.knn_query(queries, k=k, num_threads=num_threads, filter=predicate)
        except RuntimeError as exc:
            raise EngineError(str(exc)) from exc
        finally:
            index.set_ef(self._config.ef_search)
        return KnnBatch(
            k=k,
            count=len(queries),
            labels=np.ascontiguousarray(labels).reshape(-1),
            distances=np.ascontiguousarray(distances).reshape(-1),
        )

    def resize(self, capacity: int) -> None:
        """Grow the index storage."""
        index = self._require()
        try:
            index.resize_index(capacity)
        except (RuntimeError, MemoryError) as exc:
            message = f"failed to resize index to {capacity} elements: {exc}"
            raise CapacityExceededError(message) from exc
        self._dirty = True

    def persist(self) -> bool:
        """Write the index and tombstones when there are unsaved changes."""
        index = self._require()
        data_path = self._data_path()
        if data_path is None or not self._dirty:
            return False
        try:
            index.save_index(str(data_path))
        except RuntimeError as exc:
            raise EngineError(str(exc)) from exc
        with (data_path.parent / TOMBSTONE_FILE_NAME).open("w", encoding="utf-8") as handle:
            json.dump(sorted(self._tombstones), handle)
        self._dirty = False
        return True

    def counts(self) -> EngineCounts:
        """Return element accounting from the live index.

        ``deleted`` counts occupied slots without a live label, so it also
        covers slots left behind by replacement.
        """
        index = self._require()
        total = int(index.get_current_count())
        live = {int(label) for label in index.get_ids_list()} - self._tombstones
        return EngineCounts(
            total=total,
            deleted=total - len(live),
            capacity=int(index.get_max_elements()),
        )

    def list_labels(self, *, active_only: bool) -> list[int]:
        """Return registered labels in ascending order."""
        index = self._require()
        labels = (int(label) for label in index.get_ids_list())
        if active_only:
            return sorted(label for label in labels if label not in self._tombstones)
        return sorted(labels)

    def fetch(self, labels: np.ndarray) -> tuple[list[int], np.ndarray]:
        """Return stored vectors for the labels that resolve to live elements."""
        index = self._require()
        found: list[int] = []
        rows: list[np.ndarray] = []
        for value in labels:
            label = int(value)
            if label in self._tombstones:
                continue
            try:
                items = index.get_items([label])
            except RuntimeError:
                continue
            found.append(label)
            rows.append(np.asarray(items, dtype=np.float32)[0])
        if not rows:
            return [], np.empty((0, self._config.dimension), dtype=np.float32)
        return found, np.vstack(rows)

    def describe(self) -> EngineParams:
        """Read structural parameters back from the native index."""
        index = self._require()
        return EngineParams(
            dimension=int(index.dim),
            capacity=int(index.get_max_elements()),
            graph_degree=int(index.M),
            ef_construction=int(index.ef_construction),
        )

    def _require(self) -> hnswlib.Index:
        if self._index is None:
            message = "engine is not initialised"
            raise EngineError(message)
        return self._index

    def _data_path(self) -> Path | None:
        location = self._config.persist_location
        if location is None:
            return None
        return Path(location) / INDEX_FILE_NAME

    def _load_tombstones(self, index: hnswlib.Index) -> set[int]:
        """Read persisted tombstones, probing the index when the file is absent."""
        present = {int(label) for label in index.get_ids_list()}
        data_path = self._data_path()
        source = data_path.parent / TOMBSTONE_FILE_NAME if data_path is not None else None
        if source is not None and source.is_file():
            with source.open(encoding="utf-8") as handle:
                return {int(label) for label in json.load(handle)} & present
        return {label for label in present if not self._is_live(index, label)}

    def _reconcile_tombstones(self, index: hnswlib.Index, labels: np.ndarray, *, replaced: bool) -> None:
        """Update tombstones after an insert revived or replaced deleted elements."""
        if not self._tombstones:
            return
        if replaced:
            self._tombstones &= {int(label) for label in index.get_ids_list()}
        touched = {int(label) for label in labels} & self._tombstones
        for label in touched:
            if self._is_live(index, label):
                self._tombstones.discard(label)

    @staticmethod
    def _is_live(index: hnswlib.Index, label: int) -> bool:
        try:
            index.get_items([label])
        except RuntimeError:
            return False
        return True
