"""Tests for the StageMachine - transitions, stage barrier, ledger trail."""

from __future__ import annotations

import pytest

from stagecraft.core.run_ledger import RunLedger
from stagecraft.core.stage_machine import InvalidTransitionError, SequencingError, StageMachine
from stagecraft.models.stages import StageState

LAYOUT = [("build", ["compile", "lint"]), ("deploy", ["rollout"])]


@pytest.fixture
def machine(stage_machine: StageMachine, run_id: str) -> StageMachine:
    stage_machine.initialize_run(run_id, LAYOUT)
    return stage_machine


class TestStageMachine:
    def test_initial_states(self, machine: StageMachine, run_id: str):
        assert machine.get_all_states(run_id) == {
            "build": StageState.NOT_STARTED,
            "deploy": StageState.NOT_STARTED,
        }
        assert machine.get_action_state(run_id, "build", "lint") == StageState.NOT_STARTED

    def test_transition_recorded(self, machine: StageMachine, run_id: str, ledger: RunLedger):
        entry = machine.transition(run_id, "build", StageState.RUNNING)
        assert entry.state_transition == "not_started->running"
        assert ledger.get_run_entries(run_id)[-1].entry_hash == entry.entry_hash

    def test_invalid_transition_rejected(self, machine: StageMachine, run_id: str):
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "build", StageState.SUCCEEDED)

    def test_terminal_states_are_final(self, machine: StageMachine, run_id: str):
        machine.transition(run_id, "build", StageState.SKIPPED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "build", StageState.RUNNING)

    def test_unknown_action(self, machine: StageMachine, run_id: str):
        with pytest.raises(KeyError):
            machine.transition(run_id, "build", StageState.RUNNING, action_id="nope")


class TestStageBarrier:
    def _finish_build(self, machine: StageMachine, run_id: str) -> None:
        machine.transition(run_id, "build", StageState.RUNNING)
        for action in ("compile", "lint"):
            machine.transition(run_id, "build", StageState.RUNNING, action_id=action)
            machine.transition(run_id, "build", StageState.SUCCEEDED, action_id=action)
        machine.transition(run_id, "build", StageState.SUCCEEDED)

    def test_later_stage_cannot_start_first(self, machine: StageMachine, run_id: str):
        with pytest.raises(SequencingError):
            machine.transition(run_id, "deploy", StageState.RUNNING)

    def test_later_stage_starts_after_success(self, machine: StageMachine, run_id: str):
        self._finish_build(machine, run_id)
        entry = machine.transition(run_id, "deploy", StageState.RUNNING)
        assert entry.state_transition == "not_started->running"

    def test_later_stage_blocked_by_failure(self, machine: StageMachine, run_id: str):
        machine.transition(run_id, "build", StageState.RUNNING)
        machine.transition(run_id, "build", StageState.RUNNING, action_id="compile")
        machine.transition(run_id, "build", StageState.FAILED, action_id="compile")
        machine.transition(run_id, "build", StageState.SKIPPED, action_id="lint")
        machine.transition(run_id, "build", StageState.FAILED)
        with pytest.raises(SequencingError):
            machine.transition(run_id, "deploy", StageState.RUNNING)

    def test_stage_cannot_complete_with_running_action(self, machine: StageMachine, run_id: str):
        machine.transition(run_id, "build", StageState.RUNNING)
        machine.transition(run_id, "build", StageState.RUNNING, action_id="compile")
        machine.transition(run_id, "build", StageState.SUCCEEDED, action_id="compile")
        machine.transition(run_id, "build", StageState.RUNNING, action_id="lint")
        with pytest.raises(SequencingError):
            machine.transition(run_id, "build", StageState.SUCCEEDED)

    def test_action_needs_running_stage(self, machine: StageMachine, run_id: str):
        with pytest.raises(SequencingError):
            machine.transition(run_id, "build", StageState.RUNNING, action_id="compile")

    def test_skip_without_running(self, machine: StageMachine, run_id: str):
        machine.transition(run_id, "deploy", StageState.SKIPPED, action_id="rollout")
        machine.transition(run_id, "deploy", StageState.SKIPPED)
        assert machine.get_stage_state(run_id, "deploy") == StageState.SKIPPED
