"""``stagecraft verify RUN_ID`` - check the ledger hash chain of a run."""

from __future__ import annotations

import typer
from rich.console import Console

from stagecraft.cli.commands.status import open_ledger, require_run
from stagecraft.config import settings
from stagecraft.core.run_ledger import LedgerIntegrityError
from stagecraft.monitor.renderer import MonitorRenderer

console = Console()


def verify_cmd(
    run_id: str = typer.Argument(..., help="The pipeline run ID to verify."),
    ledger_db: str = typer.Option(
        str(settings.ledger_path),
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Verify that no entry of the run's status trail was altered."""
    ledger = open_ledger(ledger_db)
    require_run(ledger, run_id)
    renderer = MonitorRenderer(console=console)

    try:
        ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
        renderer.print_chain_verification(run_id, False)
        raise typer.Exit(code=1)
    renderer.print_chain_verification(run_id, True)
