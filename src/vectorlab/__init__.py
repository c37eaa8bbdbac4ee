"""Top-level package for vectorlab."""

from importlib import metadata

from vectorlab.config import IndexConfig
from vectorlab.index import HnswIndex
from vectorlab.models import QueryHit, QueryRequest, QueryResult
from vectorlab.spaces import Space

__all__ = [
    "HnswIndex",
    "IndexConfig",
    "QueryHit",
    "QueryRequest",
    "QueryResult",
    "Space",
    "__version__",
]

try:
    __version__ = metadata.version("vectorlab")
except metadata.PackageNotFoundError:  # pragma: no cover - fallback for editable installs
    __version__ = "0.1.0"
