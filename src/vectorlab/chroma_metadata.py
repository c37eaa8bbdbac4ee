"""Reader for Chroma's persisted HNSW segment metadata.

Chroma stores the mapping between its string ids and HNSW labels in
``index_metadata.pickle``, a pickled ``PersistentData`` object. The reader
below resolves only that class, so arbitrary pickles are rejected rather than
executed, and chromadb does not need to be installed.
"""

from __future__ import annotations

import pickle
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from vectorlab.errors import InvalidArgumentError, NotFoundError

METADATA_FILE_NAME = "index_metadata.pickle"

_PERSISTENT_DATA_MODULES = frozenset(
    {
        "chromadb.segment.impl.vector.local_persistent_hnsw",
        "__main__",
    },
)
_SAFE_BUILTINS = frozenset({"dict", "list", "set", "frozenset", "tuple", "int", "str", "float"})


class _PersistentData:
    """Attribute bag standing in for Chroma's ``PersistentData`` during unpickling."""

    def __setstate__(self, state: dict[str, Any]) -> None:
        self.__dict__.update(state)


class _MetadataUnpickler(pickle.Unpickler):
    def find_class(self, module: str, name: str) -> Any:
        if name == "PersistentData" and module in _PERSISTENT_DATA_MODULES:
            return _PersistentData
        if module == "builtins" and name in _SAFE_BUILTINS:
            return super().find_class(module, name)
        message = f"refusing to load {module}.{name} from segment metadata"
        raise InvalidArgumentError(message)


class ChromaSegmentMetadata(BaseModel):
    """Id/label bookkeeping of a Chroma HNSW segment."""

    dimensionality: int | None = None
    total_elements_added: int = 0
    max_seq_id: int | None = None
    id_to_label: dict[str, int] = Field(default_factory=dict)
    label_to_id: dict[int, str] = Field(default_factory=dict)
    id_to_seq_id: dict[str, int] = Field(default_factory=dict)

    def labels_for(self, ids: list[str]) -> list[int]:
        """Return the HNSW labels of Chroma ``ids``, skipping unknown ids."""
        return [self.id_to_label[item] for item in ids if item in self.id_to_label]


def load_chroma_metadata(path: str | Path) -> ChromaSegmentMetadata:
    """Read ``index_metadata.pickle`` from a file or segment directory."""
    source = Path(path)
    if source.is_dir():
        source = source / METADATA_FILE_NAME
    if not source.is_file():
        message = f"segment metadata not found: {source}"
        raise NotFoundError(message)
    with source.open("rb") as handle:
        try:
            loaded = _MetadataUnpickler(handle).load()
        except (pickle.UnpicklingError, EOFError, AttributeError) as exc:
            message = f"segment metadata is not a valid pickle: {source}"
            raise InvalidArgumentError(message) from exc
    state = loaded.__dict__ if isinstance(loaded, _PersistentData) else loaded
    if not isinstance(state, dict):
        message = f"unexpected segment metadata payload in {source}"
        raise InvalidArgumentError(message)
    return ChromaSegmentMetadata.model_validate(state)
