"""Deterministic stage/action state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- A stage cannot enter RUNNING until every earlier stage SUCCEEDED and
  every action of every earlier stage is terminal
- An action cannot enter RUNNING unless its stage is RUNNING
- A stage cannot leave RUNNING while any of its actions is not terminal
- Every transition recorded in the run ledger
"""

from __future__ import annotations

import threading

from stagecraft.core.run_ledger import RunLedger
from stagecraft.models.ledger import LedgerEntry
from stagecraft.models.stages import TERMINAL_STATES, VALID_TRANSITIONS, StageState

# Key for a stage's own state inside the per-run table.
_STAGE_KEY = ""


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class SequencingError(InvalidTransitionError):
    """Raised when a transition would break stage ordering."""


class StageMachine:
    """Tracks stage and action states for runs and records every transition.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger
        self._lock = threading.RLock()
        # run_id -> ordered stage names
        self._order: dict[str, list[str]] = {}
        # run_id -> {stage_name -> {action_id or "" -> state}}
        self._states: dict[str, dict[str, dict[str, StageState]]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(
        self, run_id: str, layout: list[tuple[str, list[str]]]
    ) -> None:
        """Register a run's stages (in ordinal order) and their action ids."""
        with self._lock:
            self._order[run_id] = [name for name, _ in layout]
            self._states[run_id] = {
                name: {_STAGE_KEY: StageState.NOT_STARTED}
                | {aid: StageState.NOT_STARTED for aid in action_ids}
                for name, action_ids in layout
            }

    def get_stage_state(self, run_id: str, stage_id: str) -> StageState:
        with self._lock:
            return self._states[run_id][stage_id][_STAGE_KEY]

    def get_action_state(self, run_id: str, stage_id: str, action_id: str) -> StageState:
        with self._lock:
            return self._states[run_id][stage_id][action_id]

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        """Snapshot of stage states, in stage order."""
        with self._lock:
            return {
                name: self._states[run_id][name][_STAGE_KEY]
                for name in self._order[run_id]
            }

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        action_id: str = "",
        artifact_references: list[str] | None = None,
        detail: dict[str, str] | None = None,
    ) -> LedgerEntry:
        """Move a stage (or one of its actions) to *target_state*.

        Returns the sealed LedgerEntry.
        """
        with self._lock:
            stage_states = self._states[run_id][stage_id]
            if action_id not in stage_states:
                raise KeyError(f"Unknown action {action_id!r} in stage {stage_id!r}")
            current = stage_states[action_id]

            allowed = VALID_TRANSITIONS.get(current, set())
            if target_state not in allowed:
                subject = f"{stage_id}/{action_id}" if action_id else stage_id
                raise InvalidTransitionError(
                    f"Cannot transition {subject} from {current.value} to {target_state.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )

            if action_id:
                self._check_action_transition(run_id, stage_id, action_id, target_state)
            else:
                self._check_stage_transition(run_id, stage_id, target_state)

            entry = self._ledger.append(
                LedgerEntry(
                    run_id=run_id,
                    stage_id=stage_id,
                    action_id=action_id,
                    state_transition=f"{current.value}->{target_state.value}",
                    artifact_references=artifact_references or [],
                    detail=detail or {},
                )
            )
            stage_states[action_id] = target_state
            return entry

    def _check_stage_transition(
        self, run_id: str, stage_id: str, target_state: StageState
    ) -> None:
        states = self._states[run_id]
        if target_state == StageState.RUNNING:
            for earlier in self._order[run_id]:
                if earlier == stage_id:
                    break
                earlier_states = states[earlier]
                if earlier_states[_STAGE_KEY] != StageState.SUCCEEDED:
                    raise SequencingError(
                        f"Cannot start {stage_id}: earlier stage {earlier} is "
                        f"{earlier_states[_STAGE_KEY].value}"
                    )
                pending = [
                    aid for aid, s in earlier_states.items()
                    if aid and s not in TERMINAL_STATES
                ]
                if pending:
                    raise SequencingError(
                        f"Cannot start {stage_id}: actions of {earlier} not terminal: {pending}"
                    )
        elif target_state in (StageState.SUCCEEDED, StageState.FAILED):
            pending = [
                aid for aid, s in states[stage_id].items()
                if aid and s not in TERMINAL_STATES
            ]
            if pending:
                raise SequencingError(
                    f"Cannot complete {stage_id}: actions not terminal: {pending}"
                )

    def _check_action_transition(
        self, run_id: str, stage_id: str, action_id: str, target_state: StageState
    ) -> None:
        if target_state == StageState.RUNNING:
            stage_state = self._states[run_id][stage_id][_STAGE_KEY]
            if stage_state != StageState.RUNNING:
                raise SequencingError(
                    f"Cannot start {stage_id}/{action_id}: stage is {stage_state.value}"
                )
