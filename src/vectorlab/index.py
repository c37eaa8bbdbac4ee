"""Growable HNSW index with tombstones, persistence and safe resizing."""

from __future__ import annotations

import threading
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from vectorlab.capacity import required_capacity, validate_resize
from vectorlab.config import IndexConfig, read_config_record, write_config_record
from vectorlab.engine.buffers import VECTOR_DTYPE, label_buffer, vector_buffer
from vectorlab.engine.factory import DEFAULT_BACKEND, create_engine
from vectorlab.engine.handle import EngineHandle, HandleState
from vectorlab.errors import (
    AlreadyExistsError,
    EngineError,
    InvalidArgumentError,
    LabelNotFoundError,
    NotFoundError,
    PermissionDeniedError,
)
from vectorlab.labels import coerce_label, ensure_unique_labels
from vectorlab.models import QueryRequest
from vectorlab.query import QueryDispatcher
from vectorlab.vectors import as_rows, ensure_dimension

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from types import TracebackType

    from vectorlab.engine.handle import EngineFactory
    from vectorlab.engine.protocols import SearchEngine
    from vectorlab.models import QueryResult

logger = structlog.get_logger(__name__)


class HnswIndex:
    """Manage capacity, labels and persistence of one search engine.

    Construct through ``create`` (fresh index) or ``load`` (persisted index).
    All engine access is serialised behind a re-entrant lock; query predicates
    are passed into the single engine call that uses them.
    """

    def __init__(
        self,
        config: IndexConfig,
        *,
        backend: str = DEFAULT_BACKEND,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        """Wrap ``config`` without touching the filesystem or the engine."""
        self._config = config
        self._factory: EngineFactory = engine_factory or partial(create_engine, backend)
        self._handle = EngineHandle(self._factory)
        self._dispatcher = QueryDispatcher(config.ef_search)
        self._lock = threading.RLock()

    @classmethod
    def create(
        cls,
        config: IndexConfig | None = None,
        *,
        backend: str = DEFAULT_BACKEND,
        engine_factory: EngineFactory | None = None,
        **options: Any,
    ) -> HnswIndex:
        """Create a new index, claiming ``persist_location`` when one is configured."""
        resolved = config or IndexConfig.from_options()
        if options:
            resolved = resolved.with_options(**options)
        if resolved.persist_location is not None:
            location = Path(resolved.persist_location)
            if location.exists():
                message = f"persist location already exists: {location}"
                raise AlreadyExistsError(message)
            location.mkdir(mode=0o750, parents=True)
            resolved = resolved.with_options(persist_location=location, persist_on_write=True)
        index = cls(resolved, backend=backend, engine_factory=engine_factory)
        index._write_record()
        logger.info(
            "index.created",
            space=resolved.space.value,
            dimension=resolved.dimension,
            max_elements=resolved.max_elements,
            persist_location=str(resolved.persist_location) if resolved.persist_location else None,
        )
        return index

    @classmethod
    def load(
        cls,
        persist_location: str | Path,
        *,
        max_elements: int | None = None,
        ef_search: int | None = None,
        num_threads: int | None = None,
        read_only: bool | None = None,
        backend: str = DEFAULT_BACKEND,
        engine_factory: EngineFactory | None = None,
    ) -> HnswIndex:
        """Reopen an index persisted at ``persist_location``.

        Dimension, capacity and graph parameters are taken from the loaded
        engine rather than from the stored record.
        """
        location = Path(persist_location)
        if not location.is_dir():
            message = f"persist location does not exist: {location}"
            raise NotFoundError(message)
        stored = read_config_record(location)
        overrides: dict[str, Any] = {
            key: value
            for key, value in {
                "max_elements": max_elements,
                "ef_search": ef_search,
                "num_threads": num_threads,
                "read_only": read_only,
            }.items()
            if value is not None
        }
        config = stored.with_options(**overrides) if overrides else stored
        index = cls(config, backend=backend, engine_factory=engine_factory)
        with index._lock:
            engine = index._engine()
            if engine is not None:
                live = engine.describe()
                index._config = index._config.with_options(
                    dimension=live.dimension,
                    max_elements=live.capacity,
                    graph_degree=live.graph_degree,
                    ef_construction=live.ef_construction,
                )
            index._write_record()
        logger.info(
            "index.loaded",
            persist_location=str(location),
            dimension=index._config.dimension,
            max_elements=index._config.max_elements,
            read_only=index._config.read_only,
        )
        return index

    @property
    def config(self) -> IndexConfig:
        """The current configuration."""
        return self._config

    @property
    def dimension(self) -> int:
        """The fixed vector dimension, or 0 before the first insert."""
        return self._config.dimension

    @property
    def read_only(self) -> bool:
        """Whether mutating operations are rejected."""
        return self._config.read_only

    @property
    def state(self) -> HandleState:
        """Lifecycle state of the underlying engine handle."""
        return self._handle.state

    def add(self, vectors: Sequence[Sequence[float]] | np.ndarray, labels: Iterable[int]) -> None:
        """Insert ``vectors`` under ``labels``, growing capacity first when needed."""
        with self._lock:
            self._handle.ensure_open()
            self._ensure_writable()
            rows = as_rows(vectors)
            label_list = list(labels)
            if len(rows) == 0:
                message = "vectors are empty"
                raise InvalidArgumentError(message)
            if len(rows) != len(label_list):
                message = (
                    "vectors and labels length mismatch: "
                    f"received {len(label_list)} labels for {len(rows)} vectors"
                )
                raise InvalidArgumentError(message)
            dimension = ensure_dimension(rows, self._config.dimension)
            unique = ensure_unique_labels(label_list)

            first_batch = self._config.dimension == 0
            candidate = self._config.with_options(dimension=dimension) if first_batch else self._config
            # Buffers are filled before any engine call.
            with vector_buffer(rows, dimension) as data, label_buffer(unique) as ids:
                engine = self._handle.initialize(candidate)
                try:
                    grown = self._grow_for(engine, len(unique), candidate)
                    engine.insert(data, ids, replace_deleted=candidate.allow_replace_deleted)
                except Exception as exc:
                    logger.warning("index.add_failed", count=len(unique), error=str(exc))
                    if first_batch:
                        self._reset_handle()
                    raise

            changed = first_batch or grown is not None
            if grown is not None:
                candidate = candidate.with_options(max_elements=grown)
            self._config = candidate
            if changed:
                self._write_record()
            if candidate.persist_on_write:
                engine.persist()

    def delete(self, labels: Iterable[int]) -> None:
        """Tombstone ``labels``; capacity is not reclaimed."""
        with self._lock:
            self._handle.ensure_open()
            self._ensure_writable()
            unique = ensure_unique_labels(labels)
            if not unique:
                message = "labels are empty"
                raise InvalidArgumentError(message)
            engine = self._engine()
            if engine is None:
                message = f"Label not found: {unique[0]}"
                raise EngineError(message)
            active = set(engine.list_labels(active_only=True))
            missing = [label for label in unique if label not in active]
            if missing:
                message = f"Label not found: {missing[0]}"
                raise EngineError(message)
            with label_buffer(unique) as ids:
                try:
                    engine.delete(ids)
                except EngineError as exc:
                    logger.warning("index.delete_failed", count=len(unique), error=str(exc))
                    raise
                finally:
                    # Tombstones set before a failure still reach disk.
                    if self._config.persist_on_write:
                        engine.persist()

    def resize(self, new_capacity: int) -> None:
        """Grow capacity to ``new_capacity``; shrinking is rejected."""
        with self._lock:
            self._handle.ensure_open()
            self._ensure_writable()
            if isinstance(new_capacity, bool) or not isinstance(new_capacity, int):
                message = f"capacity must be an integer, received {new_capacity!r}"
                raise InvalidArgumentError(message)
            engine = self._engine()
            current = engine.counts().capacity if engine is not None else self._config.max_elements
            validate_resize(current, new_capacity)
            if engine is not None and new_capacity != current:
                engine.resize(new_capacity)
            self._config = self._config.with_options(max_elements=new_capacity)
            self._write_record()
            if engine is not None and self._config.persist_on_write:
                engine.persist()

    def persist(self) -> bool:
        """Flush pending engine changes; return ``True`` when data was written."""
        with self._lock:
            self._handle.ensure_open()
            self._ensure_writable()
            if self._config.persist_location is None:
                logger.debug("index.persist_skipped", reason="no persist location")
                return False
            engine = self._engine()
            if engine is None:
                return False
            written = engine.persist()
            if written:
                logger.info("index.persisted", persist_location=str(self._config.persist_location))
            return written

    def query(
        self,
        vectors: Sequence[Sequence[float]] | np.ndarray,
        k: int,
        *,
        ef_search: int | None = None,
        predicate: Callable[[int], bool] | None = None,
    ) -> QueryResult:
        """Return up to ``k`` nearest active labels per vector.

        ``predicate`` is applied to this call only; it receives a label and
        returns ``True`` to keep it eligible.
        """
        request = QueryRequest(vectors=vectors, k=k, ef_search=ef_search, predicate=predicate)
        return self.execute(request)

    def execute(self, request: QueryRequest) -> QueryResult:
        """Run a prepared ``QueryRequest``."""
        with self._lock:
            self._handle.ensure_open()
            engine = self._engine()
            return self._dispatcher.dispatch(engine, request, dimension=self._config.dimension)

    def element_count(self) -> int:
        """Number of inserted elements, tombstoned ones included."""
        with self._lock:
            engine = self._engine()
            return engine.counts().total if engine is not None else 0

    def active_count(self) -> int:
        """Number of elements that are not tombstoned."""
        with self._lock:
            engine = self._engine()
            return engine.counts().active if engine is not None else 0

    def deleted_count(self) -> int:
        """Number of tombstoned elements."""
        with self._lock:
            engine = self._engine()
            return engine.counts().deleted if engine is not None else 0

    def max_elements(self) -> int:
        """Current capacity."""
        with self._lock:
            engine = self._engine()
            return engine.counts().capacity if engine is not None else self._config.max_elements

    def ids(self) -> list[int]:
        """All registered labels, tombstoned ones included."""
        with self._lock:
            engine = self._engine()
            return engine.list_labels(active_only=False) if engine is not None else []

    def active_ids(self) -> list[int]:
        """Labels that are not tombstoned."""
        with self._lock:
            engine = self._engine()
            return engine.list_labels(active_only=True) if engine is not None else []

    def get_data(self, labels: Iterable[int], *, strict: bool = False) -> np.ndarray:
        """Return stored vectors for ``labels`` in request order.

        Labels that are unknown or tombstoned are skipped, so the result may
        have fewer rows than requested. With ``strict=True`` they raise
        ``LabelNotFoundError`` instead.
        """
        requested = [coerce_label(label) for label in labels]
        with self._lock:
            engine = self._engine()
            if not requested or engine is None:
                found: list[int] = []
                data = np.empty((0, self._config.dimension), dtype=VECTOR_DTYPE)
            else:
                with label_buffer(requested) as ids:
                    found, data = engine.fetch(ids)
        missing = sorted(set(requested) - set(found))
        if missing:
            if strict:
                raise LabelNotFoundError(missing)
            logger.debug("index.get_data_missing", missing=missing)
        return data

    def close(self) -> None:
        """Release the engine; later operations raise ``IndexClosedError``."""
        with self._lock:
            if self._handle.close():
                logger.debug("index.closed", persist_location=str(self._config.persist_location))

    def __enter__(self) -> HnswIndex:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def _engine(self) -> SearchEngine | None:
        """Return the initialised engine, or ``None`` while the dimension is unset."""
        self._handle.ensure_open()
        if self._handle.initialized:
            return self._handle.engine
        if self._config.dimension == 0:
            return None
        return self._handle.initialize(self._config)

    def _grow_for(self, engine: SearchEngine, incoming: int, config: IndexConfig) -> int | None:
        """Resize the engine once if ``incoming`` elements would not fit."""
        counts = engine.counts()
        target = required_capacity(counts.total, counts.capacity, incoming, config.resize_factor)
        if target is None:
            return None
        engine.resize(target)
        logger.info("index.grown", previous=counts.capacity, capacity=target, incoming=incoming)
        return target

    def _reset_handle(self) -> None:
        """Discard an engine built for a first batch that did not commit."""
        self._handle.close()
        self._handle = EngineHandle(self._factory)

    def _ensure_writable(self) -> None:
        if self._config.read_only:
            message = "index is read only"
            raise PermissionDeniedError(message)

    def _write_record(self) -> None:
        if self._config.read_only or self._config.persist_location is None:
            return
        write_config_record(self._config)
