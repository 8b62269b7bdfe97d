"""
CLI utility helpers: output formatting and service construction.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from runregistry.core.errors import RegistryError
from runregistry.core.settings import RegistrySettings, get_settings
from runregistry.services import RegistryServices

console = Console()
err_console = Console(stderr=True)


# ── Service helper ───────────────────────────────────────────────────────


def make_services(database: str | None = None) -> RegistryServices:
    """Build services for a CLI command; ``--database`` overrides the configured URL."""
    settings = get_settings()
    if database:
        url = database if "://" in database else f"sqlite:///{database}"
        settings = RegistrySettings(**{**settings.model_dump(), "database_url": url})
    return RegistryServices(settings)


@contextmanager
def open_services(database: str | None = None) -> Iterator[RegistryServices]:
    """Services for the duration of one command; registry errors exit with code 1."""
    services = make_services(database)
    try:
        yield services
    except RegistryError as exc:
        fail(f"({exc.category.value}) {exc.message}")
    finally:
        services.close()


def fail(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red] {message}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / snapshot / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a record or a list of records to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(list(data), title=title)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(str(v) for v in _to_dict(item).values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
