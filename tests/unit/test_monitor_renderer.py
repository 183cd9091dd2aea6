"""Tests for MonitorRenderer - Rich panel output and chain status lines."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel

from stagecraft.models.stages import StageState
from stagecraft.monitor.projection import ActionStatus, RunSnapshot, StageStatus
from stagecraft.monitor.renderer import _STATE_LABELS, _STATE_STYLES, MonitorRenderer


def _make_snapshot(**overrides) -> RunSnapshot:
    values = dict(
        run_id="sc-test-run-001",
        pipeline_name="svc-dev",
        environment="dev",
        branch="dev",
        status="succeeded",
        source_revision="abc123def",
        stages=[
            StageStatus(
                name="BuildAPI",
                ordinal=0,
                state=StageState.SUCCEEDED,
                actions=[
                    ActionStatus(
                        action_id="build-api",
                        state=StageState.SUCCEEDED,
                        artifact_refs=["BuildAPI/imagedefinitions"],
                    )
                ],
            ),
            StageStatus(name="DeployAPI", ordinal=1, state=StageState.NOT_STARTED),
        ],
        artifact_count=2,
    )
    values.update(overrides)
    return RunSnapshot(**values)


def _recorded() -> tuple[MonitorRenderer, Console]:
    console = Console(record=True, width=140)
    return MonitorRenderer(console=console), console


class TestMonitorRenderer:
    def test_every_state_has_a_style(self):
        assert set(_STATE_STYLES) == set(StageState)
        assert set(_STATE_LABELS) == set(StageState)

    def test_render_returns_panel(self):
        renderer, _ = _recorded()
        assert isinstance(renderer.render_snapshot(_make_snapshot()), Panel)

    def test_printed_snapshot(self):
        renderer, console = _recorded()
        renderer.print_snapshot(_make_snapshot())
        text = console.export_text()
        assert "Stagecraft Monitor: svc-dev" in text
        assert "BuildAPI" in text and "DeployAPI" in text
        assert "build-api: SUCCEEDED" in text
        assert "1/2" in text
        assert "Cause:" not in text

    def test_cause_line_on_failure(self):
        renderer, console = _recorded()
        renderer.print_snapshot(
            _make_snapshot(
                status="failed",
                cause_type="MigrationConflict",
                cause="Migration already in progress",
                failed_action="run-migrations",
            )
        )
        text = console.export_text()
        assert "Cause: MigrationConflict in run-migrations" in text
        assert "Migration already in progress" in text

    def test_source_failure_names_source_retrieval(self):
        renderer, console = _recorded()
        renderer.print_snapshot(
            _make_snapshot(status="failed", cause_type="SourceUnavailable", cause="gone")
        )
        assert "SourceUnavailable in source retrieval" in console.export_text()

    def test_broken_chain_flagged(self):
        renderer, console = _recorded()
        renderer.print_snapshot(_make_snapshot(chain_valid=False))
        assert "BROKEN" in console.export_text()

    def test_chain_verification_lines(self):
        renderer, console = _recorded()
        renderer.print_chain_verification("run-1", True)
        renderer.print_chain_verification("run-2", False)
        text = console.export_text()
        assert "Hash chain for run run-1 is valid." in text
        assert "Hash chain for run run-2 is BROKEN!" in text
