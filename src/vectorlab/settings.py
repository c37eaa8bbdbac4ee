"""Application settings loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vectorlab.spaces import Space


class Settings(BaseSettings):
    """Configuration object for the index runtime."""

    model_config = SettingsConfigDict(env_prefix="VLAB_", env_file=".env", extra="allow")

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Backends (Factory keys)
    engine_backend: str = "hnswlib"

    # Storage
    data_root: Path = Path(".vlabdata")

    # Index defaults
    space: Space = Space.L2
    max_elements: int = Field(default=1000, ge=1)
    graph_degree: int = Field(default=16, ge=2)
    ef_construction: int = Field(default=100, ge=1)
    ef_search: int = Field(default=10, ge=1)
    resize_factor: float = Field(default=1.2, gt=1.0)
    num_threads: int | None = None

    def index_defaults(self) -> dict[str, Any]:
        """Return index configuration options derived from these settings."""
        defaults: dict[str, Any] = {
            "space": self.space,
            "max_elements": self.max_elements,
            "graph_degree": self.graph_degree,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
            "resize_factor": self.resize_factor,
        }
        if self.num_threads is not None:
            defaults["num_threads"] = self.num_threads
        return defaults
