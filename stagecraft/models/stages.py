"""Stage and action state models - deterministic transitions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """Strict state model shared by stages and the actions inside them."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# Valid state transitions - enforced structurally by StageMachine.
# SKIPPED is how a not-yet-started action or stage ends when the run aborts.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.SKIPPED},
    StageState.RUNNING: {StageState.SUCCEEDED, StageState.FAILED},
    StageState.SUCCEEDED: set(),  # terminal
    StageState.FAILED: set(),  # terminal
    StageState.SKIPPED: set(),  # terminal
}

TERMINAL_STATES: frozenset[StageState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


class ActionResult(BaseModel):
    """Outcome of one action within a run."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    kind: str
    state: StageState
    outputs: list[str] = []  # artifact keys written
    detail: dict[str, str] = {}
    error: str | None = None
    error_type: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class StageResult(BaseModel):
    """Outcome of one stage: its own state plus every action's result."""

    model_config = ConfigDict(frozen=True)

    name: str
    ordinal: int
    state: StageState
    actions: list[ActionResult] = []

    @property
    def failed_actions(self) -> list[ActionResult]:
        return [a for a in self.actions if a.state == StageState.FAILED]
