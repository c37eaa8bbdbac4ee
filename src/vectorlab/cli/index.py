"""CLI entry points for index management."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import typer
from pydantic import ValidationError

from vectorlab.chroma_metadata import load_chroma_metadata
from vectorlab.container import build_container
from vectorlab.errors import VectorLabError

if TYPE_CHECKING:
    from vectorlab.container import Container
    from vectorlab.index import HnswIndex

app = typer.Typer(help="Create, inspect, and query persisted vector indexes.")


def _get_container() -> Container:
    """Return the service container or exit with an error."""
    try:
        return build_container()
    except (ValidationError, ValueError) as exc:
        typer.echo(f"Failed to initialize container: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _parse_vectors(vectors_json: str) -> list[list[float]]:
    """Parse a JSON array of vectors, accepting a single flat vector."""
    try:
        payload: Any = json.loads(vectors_json)
    except json.JSONDecodeError as exc:
        typer.echo(f"Invalid JSON: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if isinstance(payload, list) and payload and all(isinstance(value, (int, float)) for value in payload):
        payload = [payload]
    if not isinstance(payload, list) or not all(isinstance(row, list) for row in payload):
        typer.echo("Vectors must be a JSON array of number arrays.", err=True)
        raise typer.Exit(code=1)
    return payload


def _summary(index: HnswIndex) -> dict[str, Any]:
    """Return configuration and counts of ``index`` as a JSON-ready mapping."""
    return {
        "config": index.config.model_dump(mode="json", by_alias=True),
        "elementCount": index.element_count(),
        "activeCount": index.active_count(),
        "deletedCount": index.deleted_count(),
        "maxElements": index.max_elements(),
    }


def _fail(action: str, exc: Exception) -> typer.Exit:
    typer.echo(f"{action} failed: {exc}", err=True)
    return typer.Exit(code=1)


@app.command()
def create(
    path: str = typer.Argument(..., help="Directory to create the index in."),
    dimension: int = typer.Option(0, "--dim", "-d", help="Vector dimension (0 = fixed by first insert)."),
    space: str | None = typer.Option(None, "--space", "-s", help="Distance space: l2, ip or cosine."),
    max_elements: int | None = typer.Option(None, "--max-elements", help="Initial capacity."),
    resize_factor: float | None = typer.Option(None, "--resize-factor", help="Capacity growth factor."),
    allow_replace_deleted: bool = typer.Option(
        False,
        "--allow-replace-deleted",
        help="Reuse slots of deleted elements on insert.",
    ),
) -> None:
    """Create an empty index at ``path``."""
    container = _get_container()
    options: dict[str, Any] = {"dimension": dimension, "allow_replace_deleted": allow_replace_deleted}
    if space is not None:
        options["space"] = space
    if max_elements is not None:
        options["max_elements"] = max_elements
    if resize_factor is not None:
        options["resize_factor"] = resize_factor
    try:
        with container.create_index(path, **options) as index:
            typer.echo(json.dumps(_summary(index), indent=2))
    except VectorLabError as exc:
        raise _fail("Create", exc) from exc


@app.command()
def info(
    path: str = typer.Argument(..., help="Index directory."),
) -> None:
    """Print the configuration and element counts of an index."""
    container = _get_container()
    try:
        with container.open_index(path, read_only=True) as index:
            typer.echo(json.dumps(_summary(index), indent=2))
    except VectorLabError as exc:
        raise _fail("Info", exc) from exc


@app.command()
def ids(
    path: str = typer.Argument(..., help="Index directory."),
    active: bool = typer.Option(False, "--active", help="Exclude deleted labels."),
) -> None:
    """Print the labels stored in an index."""
    container = _get_container()
    try:
        with container.open_index(path, read_only=True) as index:
            labels = index.active_ids() if active else index.ids()
    except VectorLabError as exc:
        raise _fail("Listing ids", exc) from exc
    typer.echo(json.dumps(labels))


@app.command()
def add(
    path: str = typer.Argument(..., help="Index directory."),
    vectors_json: str = typer.Option(..., "--vectors-json", "-v", help="JSON array of vectors."),
    labels: list[int] = typer.Option(..., "--label", "-l", help="Label for each vector, in order."),
) -> None:
    """Add vectors to an index."""
    vectors = _parse_vectors(vectors_json)
    container = _get_container()
    try:
        with container.open_index(path) as index:
            index.add(vectors, labels)
            count = index.element_count()
    except VectorLabError as exc:
        raise _fail("Add", exc) from exc
    typer.echo(f"Added {len(labels)} vectors ({count} elements in index)")


@app.command()
def delete(
    path: str = typer.Argument(..., help="Index directory."),
    labels: list[int] = typer.Option(..., "--label", "-l", help="Label to delete."),
) -> None:
    """Mark labels as deleted."""
    container = _get_container()
    try:
        with container.open_index(path) as index:
            index.delete(labels)
            active_count = index.active_count()
    except VectorLabError as exc:
        raise _fail("Delete", exc) from exc
    typer.echo(f"Deleted {len(labels)} labels ({active_count} active elements remain)")


@app.command()
def resize(
    path: str = typer.Argument(..., help="Index directory."),
    capacity: int = typer.Option(..., "--capacity", "-c", help="New capacity."),
) -> None:
    """Grow the capacity of an index."""
    container = _get_container()
    try:
        with container.open_index(path) as index:
            index.resize(capacity)
            max_elements = index.max_elements()
    except VectorLabError as exc:
        raise _fail("Resize", exc) from exc
    typer.echo(f"Capacity is now {max_elements}")


@app.command()
def query(
    path: str = typer.Argument(..., help="Index directory."),
    vectors_json: str = typer.Option(..., "--vectors-json", "-v", help="JSON array of query vectors."),
    k: int = typer.Option(10, "--topk", "-k", help="Number of neighbours per query."),
    ef: int | None = typer.Option(None, "--ef", help="Search breadth for this query."),
) -> None:
    """Query an index for nearest neighbours."""
    vectors = _parse_vectors(vectors_json)
    container = _get_container()
    try:
        with container.open_index(path, read_only=True) as index:
            result = index.query(vectors, k, ef_search=ef)
    except VectorLabError as exc:
        raise _fail("Query", exc) from exc
    typer.echo(result.model_dump_json(indent=2))


@app.command("chroma-metadata")
def chroma_metadata(
    path: str = typer.Argument(..., help="index_metadata.pickle file or its segment directory."),
) -> None:
    """Print the id/label mapping of a Chroma HNSW segment."""
    try:
        metadata = load_chroma_metadata(path)
    except VectorLabError as exc:
        raise _fail("Reading segment metadata", exc) from exc
    typer.echo(metadata.model_dump_json(indent=2))
