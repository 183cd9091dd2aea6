"""``stagecraft run ENV`` - run the deployment pipeline against local backends.

Every collaborator is the in-memory implementation from
``stagecraft.local``, and the health grace window runs on a simulated
clock, so a local run finishes immediately whatever the outcome.  The
ledger, artifact store and migration lock are real files.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from stagecraft.config import settings
from stagecraft.core.clock import ManualClock
from stagecraft.core.errors import UnmappedEnvironmentError
from stagecraft.core.migration_lock import MigrationLock
from stagecraft.core.pipeline_factory import (
    Collaborators,
    bootstrap_environment,
    create_pipeline,
    create_sequencer,
    environment_table,
)
from stagecraft.local import (
    DEFAULT_REVISION,
    InMemoryProvisioner,
    LocalBuildExecutor,
    LocalImageRegistry,
    LocalMigrationRunner,
    LocalSourceProvider,
    LocalSynthesizer,
    StaticHealthProbe,
)
from stagecraft.models.config import PipelineConfig
from stagecraft.monitor.projection import MonitorProjection
from stagecraft.monitor.renderer import MonitorRenderer

console = Console()


def run_cmd(
    environment: str = typer.Argument(
        settings.environment,
        help="Environment to deploy: dev, test, prod, or any branch name.",
    ),
    revision: str = typer.Option(
        DEFAULT_REVISION,
        "--revision",
        "-r",
        help="Source revision the local provider serves for the branch.",
    ),
    running_image: str = typer.Option(
        "",
        "--running-image",
        help="Image the runtime is already running before the deploy.",
    ),
    unhealthy: bool = typer.Option(
        False,
        "--unhealthy",
        help="Simulate new tasks that never pass their health check.",
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Reject environments missing from the branch table.",
    ),
    ledger_db: str = typer.Option(
        str(settings.ledger_path),
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
    artifact_dir: str = typer.Option(
        str(settings.artifact_store_path),
        "--artifacts",
        "-a",
        help="Path to the artifact store directory.",
    ),
    lock_db: str = typer.Option(
        str(settings.migration_lock_path),
        "--locks",
        help="Path to the migration lock SQLite database.",
    ),
) -> None:
    """Run the deployment pipeline for ENVIRONMENT and print its status trail."""
    app_settings = settings.model_copy(
        update={
            "ledger_path": Path(ledger_db),
            "artifact_store_path": Path(artifact_dir),
            "migration_lock_path": Path(lock_db),
            "strict_branches": strict or settings.strict_branches,
        }
    )
    config = PipelineConfig()
    table = environment_table(config, app_settings)
    provisioner = InMemoryProvisioner()
    clock = ManualClock()

    try:
        resources = bootstrap_environment(
            environment,
            config=config,
            table=table,
            provisioner=provisioner,
            initial_image_ref=running_image or None,
            app_settings=app_settings,
            clock=clock,
        )
    except UnmappedEnvironmentError as exc:
        console.print(f"[bold red]Unknown environment:[/bold red] {exc.args[0]}")
        raise typer.Exit(code=2)

    pipeline = create_pipeline(
        environment,
        config=config,
        table=table,
        resources=resources,
        collaborators=Collaborators(
            synthesizer=LocalSynthesizer(),
            executor=LocalBuildExecutor(),
            registry=LocalImageRegistry(),
            resolver=provisioner.resolver,
            runner=LocalMigrationRunner(),
            probe=StaticHealthProbe(healthy=not unhealthy),
        ),
        lock=MigrationLock(app_settings.migration_lock_path),
        app_settings=app_settings,
        clock=clock,
    )

    source = LocalSourceProvider({pipeline.branch: revision})
    sequencer = create_sequencer(source, app_settings)
    result = sequencer.run(pipeline)

    renderer = MonitorRenderer(console=console)
    renderer.print_snapshot(MonitorProjection(sequencer.ledger).snapshot(result.run_id))

    lines = [
        f"[bold]Run ID:[/bold]        {result.run_id}",
        f"[bold]Branch:[/bold]        {result.branch}",
        f"[bold]Revision:[/bold]      {result.source_revision or '-'}",
        f"[bold]Running image:[/bold] {resources.runtime.current_image_ref or '-'}",
        f"[bold]Desired count:[/bold] {resources.runtime.desired_count}",
    ]
    if result.succeeded:
        console.print(Panel("\n".join(lines), title="[bold green]Pipeline succeeded[/bold green]",
                            border_style="green", padding=(1, 2)))
        return

    lines.append(f"[bold]Cause:[/bold]         {result.cause_type}: {result.cause}")
    console.print(Panel("\n".join(lines), title="[bold red]Pipeline failed[/bold red]",
                        border_style="red", padding=(1, 2)))
    raise typer.Exit(code=1)
