"""Pipeline construction - environment in, validated Pipeline out.

``create_pipeline`` is the trigger: it resolves the environment's branch
exactly once and builds the default topology around it.

    source -> DeployInfrastructure -> BuildAPI -> DeployAPI
              (synthesize stack)     (image)     (deploy + migrate)

The deploy and migrate actions of ``DeployAPI`` are unordered siblings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from stagecraft.actions import BuildAction, DeployAction, InfrastructureAction, MigrationAction
from stagecraft.collaborators import (
    BuildExecutor,
    ConnectionSecretHandle,
    DatabaseConfig,
    HealthProbe,
    ImageRegistry,
    InfrastructureSynthesizer,
    MigrationRunner,
    Provisioner,
    SecretResolver,
    SourceProvider,
)
from stagecraft.config import StagecraftSettings, settings as default_settings
from stagecraft.core.artifact_store import ArtifactStore
from stagecraft.core.autoscaling import AutoscalingPolicy
from stagecraft.core.clock import Clock
from stagecraft.core.migration_lock import MigrationLock
from stagecraft.core.rollout import RolloutController
from stagecraft.core.run_ledger import RunLedger
from stagecraft.core.runtime import ServiceRuntime
from stagecraft.core.sequencer import Sequencer
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import SOURCE_REF, ArtifactRef
from stagecraft.models.config import EnvironmentSpec, EnvironmentTable, PipelineConfig
from stagecraft.models.pipeline import Pipeline, Stage
from stagecraft.models.runtime import RuntimeConfig

logger = logging.getLogger(__name__)

INFRASTRUCTURE_STAGE = "DeployInfrastructure"
BUILD_STAGE = "BuildAPI"
DEPLOY_STAGE = "DeployAPI"

STACK_REF = ArtifactRef(stage_id=INFRASTRUCTURE_STAGE, slot="stack")
IMAGE_DEFINITIONS_REF = ArtifactRef(stage_id=BUILD_STAGE, slot="imagedefinitions")


class Collaborators(BaseModel):
    """The external backends one pipeline deploys against."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    synthesizer: InfrastructureSynthesizer
    executor: BuildExecutor
    registry: ImageRegistry
    resolver: SecretResolver
    runner: MigrationRunner
    probe: HealthProbe


class EnvironmentResources(BaseModel):
    """Handles from the provisioning layer for one environment."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    environment: EnvironmentSpec
    runtime: ServiceRuntime
    autoscaler: AutoscalingPolicy
    database: ConnectionSecretHandle


def environment_table(
    config: PipelineConfig, app_settings: StagecraftSettings | None = None
) -> EnvironmentTable:
    app_settings = app_settings or default_settings
    return EnvironmentTable(config.environments, strict=app_settings.strict_branches)


def bootstrap_environment(
    environment_name: str,
    *,
    config: PipelineConfig,
    table: EnvironmentTable,
    provisioner: Provisioner,
    initial_image_ref: str | None = None,
    app_settings: StagecraftSettings | None = None,
    clock: Clock | None = None,
) -> EnvironmentResources:
    """Create (or look up) the runtime and database for an environment.

    Capacity bounds come from the environment spec here and nowhere else;
    deploys never touch them.  The runtime's autoscaling policy takes its
    window and cooldowns from *app_settings*.
    """
    app_settings = app_settings or default_settings
    env = table.resolve(environment_name)
    runtime = provisioner.create_runtime(
        RuntimeConfig(
            service_name=config.service_name,
            cluster_name=f"{config.project_name}-{env.name}",
            initial_image_ref=initial_image_ref,
            autoscaling=env.autoscaling,
        )
    )
    database = provisioner.create_database(
        DatabaseConfig(
            database_id=f"{config.database_id}-{env.name}",
            default_database_name=config.database_name,
        )
    )
    autoscaler = AutoscalingPolicy(
        runtime,
        window=app_settings.autoscaling_window,
        scale_up_cooldown=app_settings.scale_up_cooldown_seconds,
        scale_down_cooldown=app_settings.scale_down_cooldown_seconds,
        clock=clock,
    )
    return EnvironmentResources(
        environment=env, runtime=runtime, autoscaler=autoscaler, database=database
    )


def create_pipeline(
    environment_name: str,
    *,
    config: PipelineConfig,
    table: EnvironmentTable,
    resources: EnvironmentResources,
    collaborators: Collaborators,
    lock: MigrationLock,
    app_settings: StagecraftSettings | None = None,
    clock: Clock | None = None,
) -> Pipeline:
    """Build the default deployment pipeline for *environment_name*.

    Parameters
    ----------
    environment_name:
        Key into *table*.  Resolved once; the branch is frozen into the
        returned Pipeline.
    config:
        Project-level names (service, registry, database).
    table:
        Environment -> branch mapping.
    resources:
        Runtime and database handles from ``bootstrap_environment``.
    collaborators:
        Build, registry, synthesis, secret, migration and health backends.
    lock:
        Migration lock shared by every pipeline touching the same database.
    app_settings:
        Rollout tunables.  Defaults to the module-level settings.
    clock:
        Time source for the rollout controller.

    Raises
    ------
    UnmappedEnvironmentError
        Strict table and unknown environment.
    PipelineValidationError
        The assembled topology breaks an ordering rule.
    """
    app_settings = app_settings or default_settings
    env = table.resolve(environment_name)
    logger.info("Environment %s deploys branch %s", env.name, env.branch)

    infrastructure = InfrastructureAction(
        ActionSpec(
            id="synth-infrastructure",
            kind=ActionKind.BUILD,
            inputs=(SOURCE_REF,),
            outputs=(STACK_REF,),
            execution_env={"ENVIRONMENT": env.name},
        ),
        stack_name=f"{config.project_name}-{env.name}",
        synthesizer=collaborators.synthesizer,
    )

    build = BuildAction(
        ActionSpec(
            id="build-api",
            kind=ActionKind.BUILD,
            inputs=(SOURCE_REF,),
            outputs=(IMAGE_DEFINITIONS_REF,),
            execution_env={
                "ENVIRONMENT": env.name,
                "REPOSITORY_URI": config.registry_uri,
            },
        ),
        service_name=config.service_name,
        repository_uri=config.registry_uri,
        executor=collaborators.executor,
        registry=collaborators.registry,
        source_path=config.source_path,
    )

    grace = env.health_check_grace_seconds or app_settings.health_check_grace_seconds
    deploy = DeployAction(
        ActionSpec(
            id="deploy-api",
            kind=ActionKind.DEPLOY,
            inputs=(IMAGE_DEFINITIONS_REF,),
        ),
        controller=RolloutController(
            resources.runtime,
            collaborators.probe,
            grace_seconds=grace,
            poll_interval=app_settings.health_poll_interval_seconds,
            minimum_healthy_percent=app_settings.minimum_healthy_percent,
            rollback_attempts=app_settings.rollback_attempts,
            clock=clock,
        ),
    )

    refs = resources.database.refs()
    migrate = MigrationAction(
        ActionSpec(
            id="run-migrations",
            kind=ActionKind.MIGRATE,
            inputs=(SOURCE_REF,),
            execution_env=refs.as_env(),
            concurrency_limit=1,
        ),
        database=refs,
        lock=lock,
        resolver=collaborators.resolver,
        runner=collaborators.runner,
    )

    return Pipeline(
        name=f"{config.project_name}-{env.name}",
        environment=env.name,
        branch=env.branch,
        repository=config.repository,
        stages=(
            Stage(name=INFRASTRUCTURE_STAGE, ordinal=0, actions=(infrastructure,)),
            Stage(name=BUILD_STAGE, ordinal=1, actions=(build,)),
            Stage(name=DEPLOY_STAGE, ordinal=2, actions=(deploy, migrate)),
        ),
    )


def create_sequencer(
    source_provider: SourceProvider, app_settings: StagecraftSettings | None = None
) -> Sequencer:
    """Sequencer over the ledger and artifact store named in settings."""
    app_settings = app_settings or default_settings
    return Sequencer(
        ArtifactStore(Path(app_settings.artifact_store_path)),
        RunLedger(Path(app_settings.ledger_path)),
        source_provider,
        max_parallel_actions=app_settings.max_parallel_actions,
    )
