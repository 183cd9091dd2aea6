"""Shared test fixtures for Stagecraft."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import ClassVar

import pytest

from stagecraft.actions.base import ActionContext, ActionOutcome, BaseAction
from stagecraft.config import StagecraftSettings
from stagecraft.core.artifact_store import ArtifactStore
from stagecraft.core.clock import ManualClock
from stagecraft.core.migration_lock import MigrationLock
from stagecraft.core.pipeline_factory import (
    Collaborators,
    EnvironmentResources,
    bootstrap_environment,
    create_pipeline,
    create_sequencer,
)
from stagecraft.core.run_ledger import RunLedger
from stagecraft.core.runtime import ServiceRuntime
from stagecraft.core.stage_machine import StageMachine
from stagecraft.local import (
    InMemoryProvisioner,
    LocalBuildExecutor,
    LocalImageRegistry,
    LocalMigrationRunner,
    LocalSourceProvider,
    LocalSynthesizer,
    StaticHealthProbe,
)
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import (
    SOURCE_REF,
    Artifact,
    ArtifactKind,
    ArtifactRef,
    SourceRevision,
)
from stagecraft.models.config import EnvironmentTable, PipelineConfig
from stagecraft.models.pipeline import Pipeline, PipelineResult, Stage
from stagecraft.models.runtime import AutoscalingConfig, RuntimeConfig

PREVIOUS_IMAGE = "registry/svc:prev00000"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def store(tmp_dir: Path) -> ArtifactStore:
    """Provide a fresh ArtifactStore in a temp directory."""
    return ArtifactStore(tmp_dir / "artifacts")


@pytest.fixture
def lock(tmp_dir: Path) -> MigrationLock:
    return MigrationLock(tmp_dir / "locks.db")


@pytest.fixture
def stage_machine(ledger: RunLedger) -> StageMachine:
    return StageMachine(ledger)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "sc-test-run-001"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def runtime() -> ServiceRuntime:
    """A runtime already serving PREVIOUS_IMAGE with bounds 1..4."""
    return ServiceRuntime(
        RuntimeConfig(
            service_name="svc",
            initial_image_ref=PREVIOUS_IMAGE,
            autoscaling=AutoscalingConfig(min_capacity=1, max_capacity=4),
        )
    )


@pytest.fixture
def context(run_id: str, store: ArtifactStore) -> ActionContext:
    return ActionContext(
        run_id=run_id, stage_id="BuildAPI", environment="dev", branch="dev", store=store
    )


@pytest.fixture
def seed_source(store: ArtifactStore) -> Callable[..., SourceRevision]:
    """Factory fixture: write a source artifact the way source retrieval does."""

    def _seed(revision: str = "abc123def", branch: str = "dev") -> SourceRevision:
        source = SourceRevision(repository="svc-repo", branch=branch, revision=revision)
        store.write(
            Artifact(
                id="art-source",
                produced_by_stage_id=SOURCE_REF.stage_id,
                slot=SOURCE_REF.slot,
                kind=ArtifactKind.SOURCE,
                version=revision,
                payload=source.model_dump(),
            )
        )
        return source

    return _seed


# ---------------------------------------------------------------------------
# Stub actions and pipelines - shared across test modules
# ---------------------------------------------------------------------------


class StubAction(BaseAction):
    """Build-kind action that writes a manifest to each declared output.

    ``hook(context)`` runs first; raising from it fails the action.
    """

    kind: ClassVar[ActionKind] = ActionKind.BUILD

    def __init__(self, spec: ActionSpec, hook: Callable[[ActionContext], None] | None = None) -> None:
        super().__init__(spec)
        self.hook = hook
        self.calls = 0

    def execute(self, context: ActionContext, inputs: dict[ArtifactRef, Artifact]) -> ActionOutcome:
        self.calls += 1
        if self.hook is not None:
            self.hook(context)
        return ActionOutcome(
            artifacts=[
                self.make_artifact(ref, ArtifactKind.MANIFEST, version="v1", payload={"by": self.id})
                for ref in self.spec.outputs
            ],
            detail={"inputs": ",".join(sorted(ref.key for ref in inputs))},
        )


@pytest.fixture
def make_action() -> Callable[..., StubAction]:
    """Factory fixture: ``make_action(id, stage, outputs=["slot"], inputs=[ref])``."""

    def _factory(
        action_id: str,
        stage: str,
        *,
        outputs: Sequence[str] = (),
        inputs: Sequence[ArtifactRef] = (),
        hook: Callable[[ActionContext], None] | None = None,
        concurrency_limit: int | None = None,
    ) -> StubAction:
        spec = ActionSpec(
            id=action_id,
            kind=ActionKind.BUILD,
            inputs=tuple(inputs),
            outputs=tuple(ArtifactRef(stage_id=stage, slot=slot) for slot in outputs),
            concurrency_limit=concurrency_limit,
        )
        return StubAction(spec, hook=hook)

    return _factory


@pytest.fixture
def make_pipeline() -> Callable[..., Pipeline]:
    """Factory fixture: ``make_pipeline([(stage_name, [actions]), ...])``."""

    def _factory(
        stages: Sequence[tuple[str, Sequence[BaseAction]]],
        *,
        environment: str = "dev",
        branch: str = "dev",
    ) -> Pipeline:
        return Pipeline(
            name="test-pipeline",
            environment=environment,
            branch=branch,
            repository="svc-repo",
            stages=tuple(
                Stage(name=name, ordinal=i, actions=tuple(actions))
                for i, (name, actions) in enumerate(stages)
            ),
        )

    return _factory


# ---------------------------------------------------------------------------
# Full local harness - the default pipeline over in-memory backends
# ---------------------------------------------------------------------------


class LocalHarness:
    """Default pipeline wired to in-memory collaborators under *tmp_path*."""

    def __init__(
        self,
        tmp_path: Path,
        *,
        healthy: bool = True,
        initial_image: str | None = PREVIOUS_IMAGE,
        revision: str = "abc123def",
    ) -> None:
        self.settings = StagecraftSettings(
            ledger_path=tmp_path / "ledger.db",
            artifact_store_path=tmp_path / "artifacts",
            migration_lock_path=tmp_path / "locks.db",
            health_check_grace_seconds=30.0,
            health_poll_interval_seconds=5.0,
            strict_branches=False,
        )
        self.config = PipelineConfig(
            project_name="svc",
            repository="svc-repo",
            service_name="svc",
            registry_uri="registry/svc",
            database_id="svc-db",
        )
        self.table = EnvironmentTable(self.config.environments)
        self.clock = ManualClock()
        self.initial_image = initial_image
        self.provisioner = InMemoryProvisioner()
        self.synthesizer = LocalSynthesizer()
        self.executor = LocalBuildExecutor()
        self.registry = LocalImageRegistry()
        self.runner = LocalMigrationRunner(["0001_initial", "0002_add_users"])
        self.probe = StaticHealthProbe(healthy)
        self.source = LocalSourceProvider(default_revision=revision)
        self.lock = MigrationLock(self.settings.migration_lock_path)
        self.sequencer = create_sequencer(self.source, self.settings)
        self.resources: EnvironmentResources | None = None

    @property
    def collaborators(self) -> Collaborators:
        return Collaborators(
            synthesizer=self.synthesizer,
            executor=self.executor,
            registry=self.registry,
            resolver=self.provisioner.resolver,
            runner=self.runner,
            probe=self.probe,
        )

    @property
    def runtime(self) -> ServiceRuntime:
        assert self.resources is not None
        return self.resources.runtime

    def pipeline(self, environment: str = "dev") -> Pipeline:
        self.resources = bootstrap_environment(
            environment,
            config=self.config,
            table=self.table,
            provisioner=self.provisioner,
            initial_image_ref=self.initial_image,
            app_settings=self.settings,
            clock=self.clock,
        )
        return create_pipeline(
            environment,
            config=self.config,
            table=self.table,
            resources=self.resources,
            collaborators=self.collaborators,
            lock=self.lock,
            app_settings=self.settings,
            clock=self.clock,
        )

    def run(self, environment: str = "dev") -> PipelineResult:
        return self.sequencer.run(self.pipeline(environment))


@pytest.fixture
def make_harness(tmp_path: Path) -> Callable[..., LocalHarness]:
    def _factory(**kwargs) -> LocalHarness:
        return LocalHarness(tmp_path, **kwargs)

    return _factory
