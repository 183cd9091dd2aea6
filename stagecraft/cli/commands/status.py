"""``stagecraft status RUN_ID`` - show the stage-by-stage trail of a run.

A pure read of the run ledger; supports continuous live mode.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from stagecraft.config import settings
from stagecraft.core.run_ledger import RunLedger
from stagecraft.monitor.projection import MonitorProjection
from stagecraft.monitor.renderer import MonitorRenderer

console = Console()


def open_ledger(ledger_db: str) -> RunLedger:
    """Open an existing ledger or exit with an error."""
    db_path = Path(ledger_db)
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {ledger_db}")
        console.print("[dim]Start a run first with: stagecraft run ENV[/dim]")
        raise typer.Exit(code=1)
    return RunLedger(db_path)


def require_run(ledger: RunLedger, run_id: str) -> None:
    """Exit with the list of known runs if *run_id* has no entries."""
    if ledger.get_run_entries(run_id):
        return
    console.print(f"[bold red]Run not found:[/bold red] {run_id}")
    all_runs = ledger.get_all_run_ids()
    if all_runs:
        console.print("\n[bold]Available runs:[/bold]")
        for rid in all_runs[:10]:
            console.print(f"  [cyan]{rid}[/cyan]")
        if len(all_runs) > 10:
            console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
    raise typer.Exit(code=1)


def status_cmd(
    run_id: str = typer.Argument(
        ...,
        help="The pipeline run ID to show.",
    ),
    live: bool = typer.Option(
        False,
        "--live",
        "-L",
        help="Enable continuous live monitoring mode (Ctrl+C to exit).",
    ),
    refresh_hz: float = typer.Option(
        2.0,
        "--refresh",
        help="Refresh rate in Hz for live mode.",
    ),
    ledger_db: str = typer.Option(
        str(settings.ledger_path),
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Show the status trail of a pipeline run."""
    ledger = open_ledger(ledger_db)
    require_run(ledger, run_id)

    projection = MonitorProjection(ledger)
    renderer = MonitorRenderer(console=console)
    if live:
        console.print(
            f"[dim]Live monitoring run {run_id} at {refresh_hz} Hz. Press Ctrl+C to exit.[/dim]"
        )
        renderer.render_live(run_id, projection, refresh_hz=refresh_hz)
    else:
        renderer.print_snapshot(projection.snapshot(run_id))
