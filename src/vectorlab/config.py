"""Index configuration and its durable JSON record."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from vectorlab.errors import InvalidArgumentError, NotFoundError
from vectorlab.spaces import Space, parse_space

CONFIG_RECORD_NAME = "config.json"


def _default_num_threads() -> int:
    """Return the number of CPUs available to the process."""
    return os.cpu_count() or 1


class IndexConfig(BaseModel):
    """Parameters of a single index.

    Field names serialise in camelCase so that the on-disk record keeps stable
    keys (``maxElements``, ``graphDegree``...). ``persist_location`` is never
    written into the record; it is implied by the record's own directory.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    space: Space = Space.L2
    dimension: int = Field(default=0, ge=0)
    max_elements: int = Field(default=1000, ge=1)
    graph_degree: int = Field(
        default=16,
        ge=2,
        validation_alias=AliasChoices("graph_degree", "graphDegree", "m"),
        serialization_alias="graphDegree",
    )
    ef_construction: int = Field(default=100, ge=1)
    ef_search: int = Field(default=10, ge=1)
    num_threads: int = Field(default_factory=_default_num_threads, ge=1)
    persist_location: Path | None = Field(default=None, exclude=True)
    persist_on_write: bool = True
    allow_replace_deleted: bool = False
    read_only: bool = False
    resize_factor: float = Field(default=1.2, gt=1.0)

    @field_validator("space", mode="before")
    @classmethod
    def _coerce_space(cls, value: Any) -> Space:
        return parse_space(value)

    @classmethod
    def from_options(cls, **options: Any) -> IndexConfig:
        """Build a configuration, converting validation failures to ``InvalidArgumentError``."""
        try:
            return cls(**options)
        except ValidationError as exc:
            message = f"invalid index configuration: {_summarise(exc)}"
            raise InvalidArgumentError(message) from exc

    def with_options(self, **changes: Any) -> IndexConfig:
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data["persist_location"] = self.persist_location
        data.update(changes)
        return type(self).from_options(**data)

    def to_record(self) -> str:
        """Serialise the configuration to its JSON record form."""
        return self.model_dump_json(by_alias=True, indent=2)


def record_path(location: str | Path) -> Path:
    """Return the path of the configuration record inside ``location``."""
    return Path(location) / CONFIG_RECORD_NAME


def write_config_record(config: IndexConfig) -> Path | None:
    """Write ``config`` next to the index data; return the record path."""
    if config.persist_location is None:
        return None
    target = record_path(config.persist_location)
    with target.open("w", encoding="utf-8") as handle:
        handle.write(config.to_record())
        handle.write("\n")
    return target


def read_config_record(location: str | Path) -> IndexConfig:
    """Load the configuration record stored in ``location``."""
    source = record_path(location)
    if not source.is_file():
        message = f"configuration record not found: {source}"
        raise NotFoundError(message)
    with source.open(encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            message = f"configuration record is not valid JSON: {source}"
            raise InvalidArgumentError(message) from exc
    if not isinstance(payload, dict):
        message = f"configuration record must be a JSON object: {source}"
        raise InvalidArgumentError(message)
    payload["persist_location"] = Path(location)
    return IndexConfig.from_options(**payload)


def _summarise(error: ValidationError) -> str:
    """Return a compact ``field: message`` summary of a validation error."""
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item.get("loc", ())) or "config"
        parts.append(f"{field}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)
