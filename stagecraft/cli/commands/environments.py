"""``stagecraft environments`` - list the environment -> branch table."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from stagecraft.config import settings
from stagecraft.models.config import PipelineConfig

console = Console()


def environments_cmd() -> None:
    """List the known environments, their branches and capacity bounds."""
    config = PipelineConfig()
    grace_default = settings.health_check_grace_seconds

    table = Table(title="Environments")
    table.add_column("Environment", style="cyan")
    table.add_column("Branch", style="green")
    table.add_column("Capacity", justify="center")
    table.add_column("CPU / Mem target", justify="center")
    table.add_column("Grace (s)", justify="right")

    for env in config.environments:
        scaling = env.autoscaling
        table.add_row(
            env.name,
            env.branch,
            f"{scaling.min_capacity}-{scaling.max_capacity}",
            f"{scaling.cpu_target_percent:g}% / {scaling.memory_target_percent:g}%",
            f"{env.health_check_grace_seconds or grace_default:g}",
        )
    console.print(table)

    if settings.strict_branches:
        console.print("[dim]Unmapped environments are rejected (strict branches).[/dim]")
    else:
        console.print("[dim]Unmapped environments deploy the branch of the same name.[/dim]")
