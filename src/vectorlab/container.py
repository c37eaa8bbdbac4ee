"""Dependency injection container for vectorlab."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from vectorlab.config import IndexConfig
from vectorlab.engine.factory import available_backends, create_engine
from vectorlab.index import HnswIndex
from vectorlab.logger import bind_index, configure
from vectorlab.settings import Settings

if TYPE_CHECKING:  # pragma: no cover - typing only
    from structlog.stdlib import BoundLogger
    from vectorlab.engine.protocols import SearchEngine
else:  # pragma: no cover - runtime placeholder
    BoundLogger = object


@dataclass
class Container:
    """Aggregates configured application services."""

    settings: Settings
    logger: BoundLogger

    def engine_factory(self, config: IndexConfig) -> SearchEngine:
        """Create an engine using the configured backend."""
        return create_engine(self.settings.engine_backend, config)

    def resolve_location(self, location: str | Path) -> Path:
        """Resolve a relative index location against ``data_root``."""
        path = Path(location)
        if path.is_absolute():
            return path
        return self.settings.data_root / path

    def create_index(self, location: str | Path | None = None, **options: Any) -> HnswIndex:
        """Create a fresh index using settings-derived defaults."""
        values = self.settings.index_defaults()
        values.update(options)
        if location is not None:
            values["persist_location"] = self.resolve_location(location)
        config = IndexConfig.from_options(**values)
        bind_index(str(config.persist_location) if config.persist_location else None)
        return HnswIndex.create(config, engine_factory=self.engine_factory)

    def open_index(self, location: str | Path, **overrides: Any) -> HnswIndex:
        """Load a persisted index."""
        resolved = self.resolve_location(location)
        bind_index(str(resolved))
        return HnswIndex.load(resolved, engine_factory=self.engine_factory, **overrides)


def build_container(settings: Settings | None = None) -> Container:
    """Build the dependency container using default settings."""
    resolved_settings = settings or Settings()
    logger = cast("BoundLogger", configure(resolved_settings.log_level, resolved_settings.log_json))
    if resolved_settings.engine_backend not in available_backends():
        message = f"unsupported engine backend: {resolved_settings.engine_backend}"
        raise ValueError(message)
    logger.debug(
        "boot",
        engine_backend=resolved_settings.engine_backend,
        data_root=str(resolved_settings.data_root),
    )
    return Container(settings=resolved_settings, logger=logger)
