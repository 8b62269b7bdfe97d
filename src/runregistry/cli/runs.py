"""
CLI: ``run-registry runs`` - inspect and maintain stored runs.
"""

from __future__ import annotations

from dataclasses import asdict

import typer

from runregistry.cli.utils import console, open_services, output

app = typer.Typer(no_args_is_help=True)


def _summary(run) -> dict[str, object]:
    return {
        "id": run.id,
        "owner": run.owner,
        "status": run.status.value,
        "expiry": run.expiry.isoformat(),
        "finished_notified": run.finished_notified,
    }


@app.command("list")
def list_runs(
    principal: str | None = typer.Option(
        None, "--principal", "-p", help="Only runs this principal may see"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List stored runs."""
    with open_services(database) as services:
        listing = services.registry.list_runs(principal)
        output([_summary(run) for run in listing.values()], as_json=json_out, title="Runs")
        for skipped in listing.skipped:
            console.print(f"[yellow]skipped[/yellow] {skipped.run_id}: {skipped.error}")


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    principal: str | None = typer.Option(None, "--principal", "-p"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the stored state of one run."""
    with open_services(database) as services:
        run = services.registry.get_run(principal, run_id)
        output(run.to_snapshot(), as_json=json_out, title=f"Run: {run_id}")


@app.command()
def count(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Count stored runs."""
    with open_services(database) as services:
        output({"count": services.registry.count()}, as_json=json_out)


@app.command()
def reconcile(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Mark finished runs and send their completion messages."""
    with open_services(database) as services:
        report = services.registry.reconcile()
        output({**asdict(report), "success": report.success}, as_json=json_out, title="Reconcile")
        if report.error:
            raise typer.Exit(code=1)


@app.command()
def sweep(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete runs whose expiry has passed."""
    with open_services(database) as services:
        report = services.registry.clean_expired()
        output({**asdict(report), "success": report.success}, as_json=json_out, title="Sweep")
        if report.error:
            raise typer.Exit(code=1)


@app.command()
def unregister(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete a run's record (no error if it is already gone)."""
    with open_services(database) as services:
        deleted = services.registry.unregister(run_id)
        output({"run_id": run_id, "deleted": deleted}, as_json=json_out, title="Unregister")
