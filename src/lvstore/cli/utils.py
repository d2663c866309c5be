"""
CLI utility helpers: output formatting and repository access.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from lvstore.core.errors import LVStoreError
from lvstore.core.logging import configure_logging
from lvstore.core.models import Entity
from lvstore.core.repository import MetadataRepository, create_repository
from lvstore.core.settings import get_settings

console = Console()
err_console = Console(stderr=True)


# ── Repository helper ────────────────────────────────────────────────────


def open_repository(database: str | None = None) -> MetadataRepository:
    """Open the metadata repository. Defaults to ``LVSTORE_DATABASE_URL``."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    return create_repository(database or settings.database_url)


def fail(exc: Exception) -> typer.Exit:
    """Print *exc* to stderr and return the ``Exit`` to raise."""
    if isinstance(exc, LVStoreError):
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
    return typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, Entity):
        data = obj.to_dict()
        # encoded parameter blobs are unreadable in a terminal
        data.pop("parameters", None)
        return data
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_entity(entity: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single entity as key-value pairs (or JSON)."""
    data = _to_dict(entity)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def output_entities(items: list, *, as_json: bool = False, title: str = "") -> None:
    """Render a list of entities as a Rich table (or JSON)."""
    if as_json:
        console.print_json(json.dumps([_to_dict(i) for i in items], default=str))
        return
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(str(v) for v in _to_dict(item).values()))
    console.print(table)
