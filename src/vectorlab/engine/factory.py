"""Registry of search engine backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from vectorlab.errors import InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Callable

    from vectorlab.config import IndexConfig
    from vectorlab.engine.protocols import SearchEngine

    EngineClass = Callable[[IndexConfig], SearchEngine]

logger = structlog.get_logger(__name__)

DEFAULT_BACKEND = "hnswlib"


def _load_hnswlib() -> EngineClass:
    from vectorlab.engine.hnswlib_engine import HnswlibEngine

    return HnswlibEngine


# Loaders import lazily so a backend's native package is only needed when it is used.
_BACKENDS: dict[str, Callable[[], EngineClass]] = {
    "hnswlib": _load_hnswlib,
}


def available_backends() -> list[str]:
    """Return the registered backend names."""
    return sorted(_BACKENDS)


def create_engine(backend: str, config: IndexConfig) -> SearchEngine:
    """Create an uninitialised engine for ``config`` on the requested backend."""
    loader = _BACKENDS.get(backend)
    if loader is None:
        message = f"unknown engine backend: {backend} (available: {', '.join(available_backends())})"
        raise InvalidArgumentError(message)
    try:
        engine_class = loader()
    except ImportError as exc:
        message = (
            f"{backend} backend requires optional dependencies. Install the {backend} package "
            f"before opening a {config.space.value} index."
        )
        raise InvalidArgumentError(message) from exc
    engine = engine_class(config)
    logger.debug(
        "engine.created",
        backend=backend,
        space=config.space.value,
        dimension=config.dimension,
        max_elements=config.max_elements,
    )
    return engine
