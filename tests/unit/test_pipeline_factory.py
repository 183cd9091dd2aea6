"""Tests for default pipeline construction and environment bootstrap."""

from __future__ import annotations

import pytest

from stagecraft.core.autoscaling import MetricDimension, MetricSample
from stagecraft.core.errors import UnmappedEnvironmentError
from stagecraft.core.pipeline_factory import (
    BUILD_STAGE,
    DEPLOY_STAGE,
    IMAGE_DEFINITIONS_REF,
    INFRASTRUCTURE_STAGE,
    environment_table,
)
from stagecraft.models.actions import ActionKind
from stagecraft.models.artifacts import SOURCE_REF
from stagecraft.models.config import EnvironmentSpec, EnvironmentTable, PipelineConfig
from stagecraft.models.runtime import AutoscalingConfig
from stagecraft.models.secrets import SecretRef


class TestCreatePipeline:
    def test_default_topology(self, make_harness):
        pipeline = make_harness().pipeline("dev")
        assert pipeline.name == "svc-dev"
        assert [s.name for s in pipeline.stages] == [INFRASTRUCTURE_STAGE, BUILD_STAGE, DEPLOY_STAGE]
        assert [s.action_ids for s in pipeline.stages] == [
            ["synth-infrastructure"],
            ["build-api"],
            ["deploy-api", "run-migrations"],
        ]

    def test_artifact_wiring(self, make_harness):
        pipeline = make_harness().pipeline("dev")
        assert pipeline.graph.producer_of(IMAGE_DEFINITIONS_REF) == "build-api"
        assert pipeline.graph.consumers_of(IMAGE_DEFINITIONS_REF) == ["deploy-api"]
        assert "run-migrations" in pipeline.graph.consumers_of(SOURCE_REF)

    def test_migration_env_holds_only_references(self, make_harness):
        migrate = make_harness().pipeline("dev").stage(DEPLOY_STAGE).actions[1]
        assert migrate.kind == ActionKind.MIGRATE
        assert migrate.spec.concurrency_limit == 1
        assert migrate.spec.execution_env
        assert all(SecretRef.is_ref(v) for v in migrate.spec.execution_env.values())
        assert migrate.database.database_id == "svc-db-dev"

    def test_branch_resolved_once(self, make_harness):
        harness = make_harness()
        assert harness.pipeline("prod").branch == "main"
        assert harness.pipeline("test").branch == "test"

    def test_grace_from_settings(self, make_harness):
        deploy = make_harness().pipeline("dev").stage(DEPLOY_STAGE).actions[0]
        assert deploy.controller.grace_seconds == 30.0
        assert deploy.controller.poll_interval == 5.0

    def test_grace_from_environment(self, make_harness):
        harness = make_harness()
        harness.table = EnvironmentTable(
            [EnvironmentSpec(name="dev", branch="dev", health_check_grace_seconds=90)]
        )
        deploy = harness.pipeline("dev").stage(DEPLOY_STAGE).actions[0]
        assert deploy.controller.grace_seconds == 90


class TestBootstrap:
    def test_capacity_from_environment(self, make_harness):
        harness = make_harness()
        harness.table = EnvironmentTable([
            EnvironmentSpec(
                name="prod",
                branch="main",
                autoscaling=AutoscalingConfig(min_capacity=2, max_capacity=6),
            )
        ])
        harness.pipeline("prod")
        assert harness.runtime.autoscaling.max_capacity == 6
        assert harness.runtime.desired_count == 2

    def test_database_per_environment(self, make_harness):
        harness = make_harness()
        harness.pipeline("dev")
        assert set(harness.provisioner.databases) == {"svc-db-dev"}

    def test_autoscaler_takes_settings(self, make_harness):
        harness = make_harness()
        harness.settings = harness.settings.model_copy(
            update={
                "autoscaling_window": 3,
                "scale_up_cooldown_seconds": 15.0,
                "scale_down_cooldown_seconds": 120.0,
            }
        )
        harness.pipeline("dev")
        autoscaler = harness.resources.autoscaler
        assert autoscaler.runtime is harness.runtime
        assert autoscaler.scale_up_cooldown == 15.0
        assert autoscaler.scale_down_cooldown == 120.0
        assert autoscaler.clock is harness.clock
        assert all(loop.window == 3 for loop in autoscaler.loops.values())

    def test_autoscaler_drives_runtime(self, make_harness):
        harness = make_harness()
        harness.pipeline("dev")
        harness.resources.autoscaler.observe(
            MetricSample(dimension=MetricDimension.CPU, utilization_percent=80.0)
        )
        assert harness.runtime.desired_count == 2

    def test_strict_table(self, make_harness):
        harness = make_harness()
        harness.table = EnvironmentTable(strict=True)
        with pytest.raises(UnmappedEnvironmentError):
            harness.pipeline("staging")

    def test_environment_table_follows_settings(self, make_harness):
        harness = make_harness()
        strict = harness.settings.model_copy(update={"strict_branches": True})
        assert environment_table(PipelineConfig(), strict).strict is True
        assert environment_table(PipelineConfig(), harness.settings).strict is False
