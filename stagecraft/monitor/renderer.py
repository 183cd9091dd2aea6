"""Rich terminal renderer for the pipeline monitor.

Turns ``RunSnapshot`` into Rich renderables for terminal display, with
color-coded stage states and optional continuous ``Rich.Live`` mode.

Color scheme
------------
- green     : SUCCEEDED
- red       : FAILED
- yellow    : RUNNING
- dim       : NOT_STARTED
- magenta   : SKIPPED
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stagecraft.models.stages import StageState

if TYPE_CHECKING:
    from stagecraft.monitor.projection import MonitorProjection, RunSnapshot


# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[StageState, str] = {
    StageState.SUCCEEDED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.SKIPPED: "magenta",
}

_STATE_LABELS: dict[StageState, str] = {
    StageState.SUCCEEDED: "[green]SUCCEEDED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.SKIPPED: "[magenta]SKIPPED[/magenta]",
}

_STATUS_STYLES: dict[str, str] = {
    "succeeded": "green",
    "failed": "bold red",
    "running": "yellow",
    "pending": "dim",
}


class MonitorRenderer:
    """Renders ``RunSnapshot`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single snapshot render
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        """Render a RunSnapshot as a Rich Panel containing a Table."""
        table = self._build_stage_table(snapshot)

        status_style = _STATUS_STYLES.get(snapshot.status, "")
        summary_parts: list[str] = [
            f"[bold]Run:[/bold] {snapshot.run_id}",
            f"[bold]Env:[/bold] {snapshot.environment or '-'} ({snapshot.branch or '-'})",
            f"[bold]Revision:[/bold] {snapshot.source_revision or '-'}",
            f"[bold]Status:[/bold] [{status_style}]{snapshot.status}[/{status_style}]",
            f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
            f"[bold]Artifacts:[/bold] {snapshot.artifact_count}",
        ]
        chain_status = (
            "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        )
        summary_parts.append(f"[bold]Chain:[/bold] {chain_status}")

        lines = [Text.from_markup("  |  ".join(summary_parts))]
        if snapshot.cause_type:
            lines.append(
                Text.from_markup(
                    f"[bold red]Cause:[/bold red] {snapshot.cause_type}"
                    f" in {snapshot.failed_action or 'source retrieval'}"
                )
            )
            lines.append(Text(snapshot.cause or ""))

        return Panel(
            Group(table, Text(""), *lines),
            title=f"[bold]Stagecraft Monitor: {snapshot.pipeline_name or snapshot.run_id}[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_stage_table(self, snapshot: RunSnapshot) -> Table:
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            show_lines=False,
            pad_edge=True,
        )

        table.add_column("#", style="dim", width=5, justify="right")
        table.add_column("Stage", min_width=22)
        table.add_column("State", min_width=14, justify="center")
        table.add_column("Actions", min_width=30)
        table.add_column("Artifacts", justify="right", width=10)

        for stage in snapshot.stages:
            name_style = _STATE_STYLES.get(stage.state, "")
            actions = [
                f"{a.action_id}: {_STATE_LABELS.get(a.state, a.state.value)}"
                for a in stage.actions
            ]
            table.add_row(
                str(stage.ordinal),
                f"[{name_style}]{stage.name}[/{name_style}]",
                _STATE_LABELS.get(stage.state, stage.state.value),
                "\n".join(actions) if actions else "[dim]-[/dim]",
                str(len(stage.artifact_refs)) if stage.artifact_refs else "[dim]0[/dim]",
            )

        return table

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(
        self,
        run_id: str,
        projection: MonitorProjection,
        *,
        refresh_hz: float = 2.0,
    ) -> None:
        """Continuously render the monitor in Rich Live mode.

        Re-reads the ledger on every refresh cycle.  Press Ctrl+C to stop.
        """
        interval = 1.0 / max(refresh_hz, 0.1)

        with Live(
            console=self.console,
            refresh_per_second=refresh_hz,
            transient=False,
        ) as live:
            try:
                while True:
                    live.update(self.render_snapshot(projection.snapshot(run_id)))
                    time.sleep(interval)
            except KeyboardInterrupt:
                live.update(self.render_snapshot(projection.snapshot(run_id)))

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        """Print a chain verification result."""
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
