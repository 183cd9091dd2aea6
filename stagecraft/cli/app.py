"""Main Typer application - imports and registers all CLI commands.

Entry point: ``stagecraft`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from stagecraft.cli.commands.environments import environments_cmd
from stagecraft.cli.commands.locks import locks_app
from stagecraft.cli.commands.run import run_cmd
from stagecraft.cli.commands.status import status_cmd
from stagecraft.cli.commands.verify import verify_cmd
from stagecraft.config import settings

app = typer.Typer(
    name="stagecraft",
    help="Stagecraft: deployment pipeline orchestrator.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    """Route stdlib logging through rich at *level*."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=settings.debug, show_path=settings.debug)],
        force=True,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        settings.log_level,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Stagecraft: deployment pipeline orchestrator."""
    configure_logging(log_level)


# Register subcommands
app.command(name="run", help="Run the deployment pipeline for an environment.")(run_cmd)
app.command(name="status", help="Show the status trail of a run.")(status_cmd)
app.command(name="environments", help="List environments and their branches.")(environments_cmd)
app.command(name="verify", help="Verify the ledger hash chain of a run.")(verify_cmd)
app.add_typer(locks_app, name="locks")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
