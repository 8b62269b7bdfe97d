"""
Root Typer application for the run-registry CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from runregistry.core.logging import configure_logging
from runregistry.core.settings import get_settings

app = Typer(
    name="run-registry",
    help="run-registry: inspect and maintain the persisted record of workflow runs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from runregistry import __version__

        typer.echo(f"run-registry {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """run-registry CLI: list runs, run maintenance passes, manage settings."""
    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.json_logs,
        stream=sys.stderr,
    )


# ── Sub-command registration ─────────────────────────────────────────────

from runregistry.cli.management import app as settings_app  # noqa: E402
from runregistry.cli.runs import app as runs_app  # noqa: E402

app.add_typer(runs_app, name="runs", help="Stored run inspection and maintenance.")
app.add_typer(settings_app, name="settings", help="Management settings.")


if __name__ == "__main__":
    app()
