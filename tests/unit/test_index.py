"""Tests for the index management layer against a recording engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from vectorlab.config import IndexConfig
from vectorlab.engine.handle import HandleState
from vectorlab.engine.protocols import EngineCounts, EngineParams, KnnBatch
from vectorlab.errors import (
    CapacityExceededError,
    DimensionMismatchError,
    DuplicateLabelError,
    EngineError,
    IndexClosedError,
    InvalidArgumentError,
    LabelNotFoundError,
    PermissionDeniedError,
)
from vectorlab.index import HnswIndex

if TYPE_CHECKING:
    from collections.abc import Callable


class RecordingEngine:
    """In-memory brute-force engine that records boundary calls."""

    name = "recording"

    def __init__(self, config: IndexConfig) -> None:
        self.config = config
        self.calls: list[tuple[Any, ...]] = []
        self.vectors: dict[int, np.ndarray] = {}
        self.deleted: set[int] = set()
        self.capacity = config.max_elements
        self.fail_resize = False
        self.fail_insert = False

    def init(self) -> None:
        self.calls.append(("init",))

    def free(self) -> None:
        self.calls.append(("free",))

    def insert(self, vectors: np.ndarray, labels: np.ndarray, *, replace_deleted: bool) -> None:
        self.calls.append(("insert", [int(label) for label in labels], replace_deleted))
        if self.fail_insert:
            raise EngineError("insert rejected")
        if len(self.vectors) + len(labels) > self.capacity:
            raise EngineError("The number of elements exceeds the specified limit")
        for row, label in zip(vectors, labels, strict=True):
            self.vectors[int(label)] = np.array(row, copy=True)
            self.deleted.discard(int(label))

    def delete(self, labels: np.ndarray) -> None:
        self.calls.append(("delete", [int(label) for label in labels]))
        for value in labels:
            label = int(value)
            if label not in self.vectors or label in self.deleted:
                raise EngineError("Label not found")
            self.deleted.add(label)

    def search(
        self,
        queries: np.ndarray,
        k: int,
        *,
        ef: int,
        predicate: Callable[[int], bool] | None = None,
    ) -> KnnBatch:
        self.calls.append(("search", k, ef, predicate))
        labels: list[int] = []
        distances: list[float] = []
        for query in queries:
            scored = sorted(
                (float(np.sum((vector - query) ** 2)), label)
                for label, vector in self.vectors.items()
                if label not in self.deleted and (predicate is None or predicate(label))
            )[:k]
            labels.extend(label for _, label in scored)
            distances.extend(distance for distance, _ in scored)
        return KnnBatch(
            k=k,
            count=len(queries),
            labels=np.asarray(labels, dtype=np.uint64),
            distances=np.asarray(distances, dtype=np.float32),
        )

    def resize(self, capacity: int) -> None:
        self.calls.append(("resize", capacity))
        if self.fail_resize:
            raise CapacityExceededError("allocation failed")
        self.capacity = capacity

    def persist(self) -> bool:
        self.calls.append(("persist",))
        return False

    def counts(self) -> EngineCounts:
        return EngineCounts(total=len(self.vectors), deleted=len(self.deleted), capacity=self.capacity)

    def list_labels(self, *, active_only: bool) -> list[int]:
        return sorted(label for label in self.vectors if not (active_only and label in self.deleted))

    def fetch(self, labels: np.ndarray) -> tuple[list[int], np.ndarray]:
        found = [int(label) for label in labels if int(label) in self.vectors and int(label) not in self.deleted]
        if not found:
            return [], np.empty((0, self.config.dimension), dtype=np.float32)
        return found, np.vstack([self.vectors[label] for label in found])

    def describe(self) -> EngineParams:
        return EngineParams(
            dimension=self.config.dimension,
            capacity=self.capacity,
            graph_degree=self.config.graph_degree,
            ef_construction=self.config.ef_construction,
        )


class EngineRecorder:
    """Engine factory that keeps every engine it creates."""

    def __init__(self) -> None:
        self.engines: list[RecordingEngine] = []

    def __call__(self, config: IndexConfig) -> RecordingEngine:
        engine = RecordingEngine(config)
        self.engines.append(engine)
        return engine

    @property
    def engine(self) -> RecordingEngine:
        return self.engines[-1]

    def calls(self, kind: str) -> list[tuple[Any, ...]]:
        return [call for call in self.engine.calls if call[0] == kind]


@pytest.fixture
def recorder() -> EngineRecorder:
    """Return a fresh engine recorder."""
    return EngineRecorder()


def _index(recorder: EngineRecorder, **options: Any) -> HnswIndex:
    """Create an in-memory index wired to ``recorder``."""
    return HnswIndex.create(IndexConfig.from_options(**options), engine_factory=recorder)


def test_add_then_ids_returns_added_labels(recorder: EngineRecorder) -> None:
    """Every label of a valid batch is registered."""
    index = _index(recorder)
    index.add([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]], [7, 3, 11])

    assert set(index.ids()) == {3, 7, 11}
    assert index.dimension == 2
    assert index.element_count() == 3


def test_engine_is_initialised_lazily(recorder: EngineRecorder) -> None:
    """No engine exists until an operation needs one with a known dimension."""
    index = _index(recorder)

    assert index.element_count() == 0
    assert index.ids() == []
    assert index.max_elements() == 1000
    assert recorder.engines == []
    assert index.state is HandleState.UNINITIALIZED

    index.add([[1.0, 2.0]], [1])
    index.add([[3.0, 4.0]], [2])

    assert len(recorder.engines) == 1
    assert recorder.calls("init") == [("init",)]
    assert index.state is HandleState.INITIALIZED


def test_duplicate_labels_fail_before_engine_call(recorder: EngineRecorder) -> None:
    """A batch with a repeated label is rejected without side effects."""
    index = _index(recorder, dimension=2)
    index.add([[0.0, 0.0]], [1])

    with pytest.raises(DuplicateLabelError, match="not unique"):
        index.add([[1.0, 1.0], [2.0, 2.0]], [5, 5])

    assert isinstance(DuplicateLabelError("x"), InvalidArgumentError)
    assert index.element_count() == 1
    assert len(recorder.calls("insert")) == 1


def test_dimension_mismatch_leaves_state_untouched(recorder: EngineRecorder) -> None:
    """Vectors that disagree with the fixed dimension are rejected."""
    index = _index(recorder)
    index.add([[1.0, 2.0, 3.0]], [1])

    with pytest.raises(DimensionMismatchError, match="expected 3, got 2"):
        index.add([[1.0, 2.0]], [2])
    with pytest.raises(DimensionMismatchError):
        index.add([[1.0, 2.0, 3.0], [1.0]], [3, 4])

    assert index.element_count() == 1
    assert index.dimension == 3


@pytest.mark.parametrize(
    ("vectors", "labels", "pattern"),
    [
        ([], [], "vectors are empty"),
        ([[1.0, 2.0]], [1, 2], "length mismatch"),
        ([[1.0, 2.0]], [-1], "out of range"),
        ([[1.0, 2.0]], [2**64], "out of range"),
        ([[1.0, "x"]], [1], "does not contain 2 numbers"),
    ],
)
def test_add_rejects_invalid_batches(
    recorder: EngineRecorder,
    vectors: list[list[Any]],
    labels: list[int],
    pattern: str,
) -> None:
    """Malformed batches raise ``InvalidArgumentError``."""
    index = _index(recorder, dimension=2)

    with pytest.raises(InvalidArgumentError, match=pattern):
        index.add(vectors, labels)

    assert index.element_count() == 0


def test_non_numeric_batch_does_not_grow_capacity(recorder: EngineRecorder) -> None:
    """Contents are checked before the engine is resized."""
    index = _index(recorder, max_elements=2)
    index.add([[1.0, 2.0], [3.0, 4.0]], [1, 2])

    with pytest.raises(InvalidArgumentError, match="row 1 does not contain 2 numbers"):
        index.add([[5.0, 6.0], ["x", "y"]], [3, 4])

    assert index.max_elements() == 2
    assert recorder.calls("resize") == []
    assert len(recorder.calls("insert")) == 1
    assert index.element_count() == 2


def test_first_batch_failure_does_not_fix_dimension(recorder: EngineRecorder) -> None:
    """An engine failure on the first batch leaves the dimension unset."""

    def failing_factory(config: IndexConfig) -> RecordingEngine:
        engine = recorder(config)
        engine.fail_insert = True
        return engine

    index = HnswIndex.create(IndexConfig.from_options(), engine_factory=failing_factory)

    with pytest.raises(EngineError, match="insert rejected"):
        index.add([[1.0, 2.0]], [1])

    assert index.dimension == 0
    assert recorder.engine.calls[-1] == ("free",)
    assert index.element_count() == 0


def test_read_only_index_rejects_mutations(recorder: EngineRecorder) -> None:
    """Every mutating operation fails on a read-only index."""
    index = _index(recorder, dimension=2, read_only=True)

    with pytest.raises(PermissionDeniedError, match="read only"):
        index.add([[1.0, 2.0]], [1])
    with pytest.raises(PermissionDeniedError):
        index.delete([1])
    with pytest.raises(PermissionDeniedError):
        index.resize(2000)
    with pytest.raises(PermissionDeniedError):
        index.persist()


def test_delete_tombstones_label(recorder: EngineRecorder) -> None:
    """Deleting a label updates active accounting but not the total."""
    index = _index(recorder)
    index.add([[1.0, 0.0], [0.0, 1.0]], [1, 2])

    index.delete([1])

    assert index.element_count() == 2
    assert index.active_count() == 1
    assert index.deleted_count() == 1
    assert 1 in index.ids()
    assert 1 not in index.active_ids()
    assert index.max_elements() == 1000


def test_delete_validates_labels(recorder: EngineRecorder) -> None:
    """Empty or repeated delete batches never reach the engine."""
    index = _index(recorder)
    index.add([[1.0, 0.0]], [1])

    with pytest.raises(InvalidArgumentError, match="labels are empty"):
        index.delete([])
    with pytest.raises(DuplicateLabelError):
        index.delete([1, 1])

    assert recorder.calls("delete") == []


def test_delete_unknown_label_surfaces_engine_error(recorder: EngineRecorder) -> None:
    """Unknown labels are reported with the engine's message."""
    index = _index(recorder)
    index.add([[1.0, 0.0]], [1])

    with pytest.raises(EngineError, match="Label not found: 42"):
        index.delete([42])


def test_delete_with_unknown_label_tombstones_nothing(recorder: EngineRecorder) -> None:
    """A batch mixing known and unknown labels is rejected as a whole."""
    index = _index(recorder)
    index.add([[1.0, 0.0], [0.0, 1.0]], [1, 2])

    with pytest.raises(EngineError, match="Label not found: 999"):
        index.delete([1, 999])

    assert recorder.calls("delete") == []
    assert index.active_ids() == [1, 2]

    index.delete([2])
    with pytest.raises(EngineError, match="Label not found: 2"):
        index.delete([1, 2])

    assert recorder.calls("delete") == [("delete", [2])]
    assert index.active_ids() == [1]


def test_resize_is_monotonic(recorder: EngineRecorder) -> None:
    """Shrinking fails; growing sets the capacity exactly."""
    index = _index(recorder, max_elements=10)
    index.add([[1.0]], [1])

    with pytest.raises(InvalidArgumentError, match="less than current capacity"):
        index.resize(9)

    index.resize(10)
    index.resize(25)

    assert index.max_elements() == 25
    assert index.config.max_elements == 25
    assert recorder.calls("resize") == [("resize", 25)]


def test_resize_before_first_insert_updates_configuration(recorder: EngineRecorder) -> None:
    """Without an engine the configured capacity is adjusted."""
    index = _index(recorder, max_elements=10)

    index.resize(40)

    assert index.max_elements() == 40
    assert recorder.engines == []


def test_growth_happens_once_before_insert(recorder: EngineRecorder) -> None:
    """Capacity 2 with factor 1.2 grows to 3, then to 4."""
    index = _index(recorder, max_elements=2, resize_factor=1.2)

    index.add([[0.0], [1.0], [2.0]], [1, 2, 3])

    assert index.max_elements() == 3
    assert [call[0] for call in recorder.engine.calls] == ["init", "resize", "insert", "persist"]

    index.add([[3.0]], [4])

    assert index.max_elements() == 4
    assert recorder.calls("resize") == [("resize", 3), ("resize", 4)]
    assert index.element_count() == 4


def test_failed_growth_aborts_add(recorder: EngineRecorder) -> None:
    """No insert is attempted when the engine cannot grow."""
    index = _index(recorder, dimension=1, max_elements=1)
    index.add([[0.0]], [1])
    recorder.engine.fail_resize = True

    with pytest.raises(CapacityExceededError):
        index.add([[1.0]], [2])

    assert len(recorder.calls("insert")) == 1
    assert index.element_count() == 1


def test_query_returns_sorted_unique_hits(recorder: EngineRecorder) -> None:
    """Fewer than ``k`` active labels yields at most that many hits."""
    index = _index(recorder)
    index.add([[0.0, 0.0], [1.0, 0.0], [5.0, 0.0]], [1, 2, 3])
    index.delete([2])

    result = index.query([[0.9, 0.0]], k=10)

    assert result.labels() == [[1, 3]]
    distances = result.distances()[0]
    assert distances == sorted(distances)
    assert result.meta["effective_k"] == 2


def test_query_predicate_is_scoped_to_one_call(recorder: EngineRecorder) -> None:
    """A predicate never leaks into a later query."""
    index = _index(recorder)
    index.add([[0.0], [1.0], [2.0], [3.0]], [1, 2, 3, 4])

    filtered = index.query([[0.0]], k=4, predicate=lambda label: label % 2 == 0)
    unfiltered = index.query([[0.0]], k=4)

    assert filtered.labels() == [[2, 4]]
    assert unfiltered.labels() == [[1, 2, 3, 4]]
    searches = recorder.calls("search")
    assert searches[0][3] is not None
    assert searches[1][3] is None


def test_query_ef_override(recorder: EngineRecorder) -> None:
    """The per-call ``ef_search`` reaches the engine; the default is used otherwise."""
    index = _index(recorder, ef_search=12)
    index.add([[0.0]], [1])

    index.query([[0.0]], k=1, ef_search=64)
    index.query([[0.0]], k=1)

    assert [call[2] for call in recorder.calls("search")] == [64, 12]


def test_query_validation(recorder: EngineRecorder) -> None:
    """Bad ``k`` or dimensions are rejected before the engine is called."""
    index = _index(recorder)
    index.add([[0.0, 1.0]], [1])

    with pytest.raises(InvalidArgumentError, match="k must be positive"):
        index.query([[0.0, 1.0]], k=0)
    with pytest.raises(DimensionMismatchError):
        index.query([[0.0, 1.0, 2.0]], k=1)

    assert recorder.calls("search") == []


def test_query_on_empty_index_returns_empty_rows(recorder: EngineRecorder) -> None:
    """Querying before any insert returns one empty row per vector."""
    index = _index(recorder)

    result = index.query([[1.0, 2.0], [3.0, 4.0]], k=3)

    assert result.hits == [[], []]


def test_get_data_is_lenient_by_default(recorder: EngineRecorder) -> None:
    """Unknown labels are omitted unless ``strict`` is requested."""
    index = _index(recorder)
    index.add([[1.0, 2.0], [3.0, 4.0]], [1, 2])

    data = index.get_data([2, 99, 1])

    np.testing.assert_array_equal(data, np.array([[3.0, 4.0], [1.0, 2.0]], dtype=np.float32))
    with pytest.raises(LabelNotFoundError, match="99"):
        index.get_data([1, 99], strict=True)


def test_close_is_terminal_and_idempotent(recorder: EngineRecorder) -> None:
    """The engine is freed once and later calls raise ``IndexClosedError``."""
    index = _index(recorder)
    index.add([[1.0]], [1])

    index.close()
    index.close()

    assert recorder.calls("free") == [("free",)]
    assert index.state is HandleState.CLOSED
    with pytest.raises(IndexClosedError):
        index.add([[2.0]], [2])
    with pytest.raises(IndexClosedError):
        index.query([[1.0]], k=1)
    with pytest.raises(IndexClosedError):
        index.element_count()


def test_close_before_initialisation_frees_nothing(recorder: EngineRecorder) -> None:
    """Closing an untouched index does not create an engine."""
    with _index(recorder) as index:
        assert index.state is HandleState.UNINITIALIZED

    assert recorder.engines == []
    assert index.state is HandleState.CLOSED
