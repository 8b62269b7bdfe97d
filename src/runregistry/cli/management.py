"""
CLI: ``run-registry settings`` - the persisted management switches.
"""

from __future__ import annotations

import typer

from runregistry.cli.utils import fail, open_services, output

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_settings(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the current management settings."""
    with open_services(database) as services:
        output(services.management.as_dict(), as_json=json_out, title="Management settings")


@app.command("set")
def set_settings(
    log_incoming_workflows: bool | None = typer.Option(
        None, "--log-incoming-workflows/--no-log-incoming-workflows"
    ),
    allow_new_workflow_runs: bool | None = typer.Option(
        None, "--allow-new-runs/--deny-new-runs"
    ),
    log_outgoing_exceptions: bool | None = typer.Option(
        None, "--log-outgoing-exceptions/--no-log-outgoing-exceptions"
    ),
    usage_record_log_file: str | None = typer.Option(
        None, "--usage-record-log-file", help="Path, or '' to clear"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Change one or more management settings."""
    changes = {
        "log_incoming_workflows": log_incoming_workflows,
        "allow_new_workflow_runs": allow_new_workflow_runs,
        "log_outgoing_exceptions": log_outgoing_exceptions,
        "usage_record_log_file": usage_record_log_file,
    }
    changes = {name: value for name, value in changes.items() if value is not None}
    if not changes:
        fail("nothing to change")

    with open_services(database) as services:
        management = services.management
        for name, value in changes.items():
            setattr(management, name, value)
        output(management.as_dict(), as_json=json_out, title="Management settings")
