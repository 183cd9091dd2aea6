"""``stagecraft locks`` - inspect and clear per-database migration locks."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from stagecraft.config import settings
from stagecraft.core.migration_lock import MigrationLock

console = Console()

locks_app = typer.Typer(
    name="locks",
    help="Inspect and clear migration locks.",
    no_args_is_help=True,
)

_LOCK_DB_OPTION = typer.Option(
    str(settings.migration_lock_path),
    "--locks",
    help="Path to the migration lock SQLite database.",
)


@locks_app.command(name="list", help="Show every held migration lock.")
def list_locks_cmd(lock_db: str = _LOCK_DB_OPTION) -> None:
    held = MigrationLock(Path(lock_db)).held()
    if not held:
        console.print("[dim]No migration locks held.[/dim]")
        return

    table = Table(title="Migration locks")
    table.add_column("Database", style="cyan")
    table.add_column("Holder", style="yellow")
    table.add_column("Acquired at")
    for database_id, holder, acquired_at in held:
        table.add_row(database_id, holder, acquired_at)
    console.print(table)


@locks_app.command(name="release", help="Forcibly release the lock on DATABASE_ID.")
def release_lock_cmd(
    database_id: str = typer.Argument(..., help="Database whose lock to clear."),
    lock_db: str = _LOCK_DB_OPTION,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Release without asking for confirmation."
    ),
) -> None:
    """Clear a lock left behind by a migration whose process is gone."""
    lock = MigrationLock(Path(lock_db))
    holder = lock.holder_of(database_id)
    if holder is None:
        console.print(f"[dim]No lock held for {database_id}.[/dim]")
        return
    if not yes:
        typer.confirm(
            f"Release the lock on {database_id} held by {holder}?", abort=True
        )

    removed = lock.force_release(database_id)
    if removed is None:
        console.print(f"[dim]Lock for {database_id} was already released.[/dim]")
        return
    console.print(f"[bold yellow]Released[/bold yellow] {database_id} (was held by {removed})")
