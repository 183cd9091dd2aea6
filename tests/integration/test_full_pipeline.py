"""End-to-end integration tests - the default pipeline over local backends.

These tests exercise pipeline construction, the Sequencer, the actions,
the RolloutController, the migration lock and the MonitorProjection
working together: source -> DeployInfrastructure -> BuildAPI -> DeployAPI.
"""

from __future__ import annotations

import time

from stagecraft.core.pipeline_factory import (
    BUILD_STAGE,
    DEPLOY_STAGE,
    IMAGE_DEFINITIONS_REF,
    INFRASTRUCTURE_STAGE,
    STACK_REF,
)
from stagecraft.models.ledger import RUN_SCOPE
from stagecraft.models.pipeline import PipelineStatus
from stagecraft.models.stages import StageState
from stagecraft.monitor.projection import MonitorProjection

PREVIOUS_IMAGE = "registry/svc:prev00000"
NEW_IMAGE = "registry/svc:abc123def"


def _action(result, stage: str, action_id: str):
    for stage_result in result.stages:
        if stage_result.name == stage:
            for action in stage_result.actions:
                if action.action_id == action_id:
                    return action
    raise KeyError(action_id)


class TestFullPipeline:
    """A healthy deploy of the dev environment."""

    def test_deploys_new_image(self, make_harness):
        harness = make_harness()
        result = harness.run("dev")

        assert result.status == PipelineStatus.SUCCEEDED, result.cause
        assert result.branch == "dev"
        assert result.source_revision == "abc123def"
        assert harness.runtime.current_image_ref == NEW_IMAGE
        assert harness.runtime.has_converged_to(NEW_IMAGE)
        assert harness.runner.applied == ["0001_initial", "0002_add_users"]

    def test_stage_artifacts(self, make_harness):
        harness = make_harness()
        harness.run("dev")
        store = harness.sequencer.store

        image = store.read(IMAGE_DEFINITIONS_REF)
        assert image.payload == {"serviceName": "svc", "imageUri": NEW_IMAGE}
        assert store.read(STACK_REF).payload["stack_name"] == "svc-dev"

    def test_stages_run_in_order(self, make_harness):
        harness = make_harness()
        result = harness.run("dev")
        stage_events = [
            (e.stage_id, e.target_state)
            for e in harness.sequencer.ledger.get_run_entries(result.run_id)
            if e.stage_id != RUN_SCOPE and not e.action_id
        ]
        assert stage_events == [
            (INFRASTRUCTURE_STAGE, "running"),
            (INFRASTRUCTURE_STAGE, "succeeded"),
            (BUILD_STAGE, "running"),
            (BUILD_STAGE, "succeeded"),
            (DEPLOY_STAGE, "running"),
            (DEPLOY_STAGE, "succeeded"),
        ]

    def test_prod_deploys_main(self, make_harness):
        harness = make_harness()
        result = harness.run("prod")
        assert result.branch == "main"
        assert harness.source.fetches == [("svc-repo", "main")]

    def test_unmapped_environment_deploys_same_named_branch(self, make_harness):
        harness = make_harness()
        result = harness.run("staging")
        assert result.succeeded
        assert result.branch == "staging"

    def test_monitor_projection_matches_result(self, make_harness):
        harness = make_harness()
        result = harness.run("dev")
        snap = MonitorProjection(harness.sequencer.ledger).snapshot(result.run_id)
        assert snap.status == "succeeded"
        assert snap.pipeline_name == "svc-dev"
        assert [s.name for s in snap.stages] == [INFRASTRUCTURE_STAGE, BUILD_STAGE, DEPLOY_STAGE]
        assert snap.chain_valid is True


class TestIdempotentRerun:
    def test_rerun_same_revision_is_no_op(self, make_harness):
        harness = make_harness()
        first = harness.run("dev")
        desired = harness.runtime.desired_count
        second = harness.run("dev")

        assert first.succeeded and second.succeeded
        assert first.run_id != second.run_id
        assert _action(second, DEPLOY_STAGE, "deploy-api").detail["no_op"] == "true"
        assert _action(second, DEPLOY_STAGE, "run-migrations").detail["applied_count"] == "0"
        assert harness.runtime.current_image_ref == NEW_IMAGE
        assert harness.runtime.desired_count == desired
        assert harness.runner.applied == ["0001_initial", "0002_add_users"]

    def test_new_revision_gets_new_tag(self, make_harness):
        harness = make_harness()
        harness.run("dev")
        harness.source.set_revision("dev", "0123456789abcdef")
        result = harness.run("dev")
        assert result.succeeded
        assert harness.runtime.current_image_ref == "registry/svc:012345678"


class TestFailedDeploys:
    def test_health_never_passes(self, make_harness):
        harness = make_harness(healthy=False)
        result = harness.run("dev")

        assert result.status == PipelineStatus.FAILED
        assert result.cause_type == "DeployHealthCheckTimeout"
        assert result.failed_action == "deploy-api"
        assert result.stage_state(DEPLOY_STAGE) == StageState.FAILED
        assert harness.runtime.current_image_ref == PREVIOUS_IMAGE
        assert harness.runtime.has_converged_to(PREVIOUS_IMAGE)
        assert harness.clock.now() >= 30.0

    def test_push_failure_stops_before_deploy(self, make_harness):
        harness = make_harness()
        harness.registry.fail_pushes = True
        result = harness.run("dev")

        assert result.cause_type == "BuildFailure"
        assert result.stage_state(BUILD_STAGE) == StageState.FAILED
        assert result.stage_state(DEPLOY_STAGE) == StageState.SKIPPED
        assert not harness.sequencer.store.exists(IMAGE_DEFINITIONS_REF)
        assert harness.runtime.current_image_ref == PREVIOUS_IMAGE
        assert harness.runner.calls == 0

    def test_infrastructure_failure(self, make_harness):
        harness = make_harness()
        harness.synthesizer.fail = True
        result = harness.run("dev")
        assert result.cause_type == "InfrastructureFailure"
        assert [s.state for s in result.stages] == [
            StageState.FAILED, StageState.SKIPPED, StageState.SKIPPED,
        ]

    def test_source_unavailable(self, make_harness):
        harness = make_harness()
        harness.source.unavailable.add("dev")
        result = harness.run("dev")

        assert result.cause_type == "SourceUnavailable"
        assert all(s.state == StageState.SKIPPED for s in result.stages)
        assert harness.executor.builds == []
        assert harness.runtime.current_image_ref == PREVIOUS_IMAGE


class TestDeployMigrateOrdering:
    """Deploy and migrate are unordered siblings inside DeployAPI."""

    def test_new_image_can_serve_before_migrations(self, make_harness):
        harness = make_harness()
        observed = []

        def wait_for_new_image():
            deadline = time.monotonic() + 5.0
            while harness.runtime.current_image_ref != NEW_IMAGE:
                if time.monotonic() > deadline:
                    raise TimeoutError("deploy did not finish while migration was pending")
                time.sleep(0.01)
            observed.append(harness.runtime.current_image_ref)

        harness.runner.on_migrate = wait_for_new_image
        result = harness.run("dev")

        assert result.succeeded
        assert observed == [NEW_IMAGE]
        assert harness.runner.applied == ["0001_initial", "0002_add_users"]

    def test_migration_failure_does_not_undo_deploy(self, make_harness):
        harness = make_harness()

        def explode():
            raise RuntimeError("column already exists")

        harness.runner.on_migrate = explode
        result = harness.run("dev")

        assert result.cause_type == "MigrationFailure"
        assert result.failed_action == "run-migrations"
        assert _action(result, DEPLOY_STAGE, "deploy-api").state in (
            StageState.SUCCEEDED, StageState.SKIPPED,
        )
        assert not harness.lock.is_held("svc-db-dev")
