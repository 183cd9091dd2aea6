"""MonitorProjection - pure read-only view over the RunLedger.

The monitor is a PROJECTION of the run ledger.  It does not compute
truth, it displays it.  Every call re-reads from the ledger and the
projection never keeps state of its own.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stagecraft.core.run_ledger import LedgerIntegrityError, RunLedger
from stagecraft.models.ledger import RUN_SCOPE, LedgerEntry
from stagecraft.models.stages import StageState


class ActionStatus(BaseModel):
    """Point-in-time status of one action, replayed from the ledger."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    state: StageState = StageState.NOT_STARTED
    detail: dict[str, str] = {}
    artifact_refs: list[str] = []


class StageStatus(BaseModel):
    """Point-in-time status of a single pipeline stage.

    Derived entirely from ledger entries - never stored independently.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    ordinal: int
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    actions: list[ActionStatus] = []

    @property
    def artifact_refs(self) -> list[str]:
        return [ref for action in self.actions for ref in action.artifact_refs]


class RunSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of a pipeline run.

    Every field is derived by re-reading the ledger.  This model is
    never persisted - it is computed fresh on every ``snapshot()`` call.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_name: str = ""
    environment: str = ""
    branch: str = ""
    status: str = "pending"
    source_revision: str | None = None
    cause: str | None = None
    cause_type: str | None = None
    failed_action: str | None = None
    pipeline_version: str = "0.1.0"
    stages: list[StageStatus] = []
    artifact_count: int = 0
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        """Number of stages that succeeded."""
        return sum(1 for s in self.stages if s.state == StageState.SUCCEEDED)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def running_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.RUNNING]


class MonitorProjection:
    """Pure read-only projection over the RunLedger.

    This class NEVER stores state.  Every method re-reads the ledger
    to compute a fresh view.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def snapshot(self, run_id: str) -> RunSnapshot:
        """Produce a point-in-time snapshot of the pipeline run.

        Parameters
        ----------
        run_id:
            The pipeline run to snapshot.

        Returns
        -------
        RunSnapshot
            A frozen snapshot of the current run state.
        """
        entries = self._ledger.get_run_entries(run_id)
        run_info = self._run_info(entries)
        stage_info = self._compute_stage_states(entries)

        # Stage order comes from the run's opening entry; stages that have
        # not been touched yet still show up as not started.
        order = [name for name in run_info.pop("stages", "").split(",") if name]
        for name in stage_info:
            if name not in order:
                order.append(name)

        stages = []
        for ordinal, name in enumerate(order):
            info = stage_info.get(name, {})
            stages.append(
                StageStatus(
                    name=name,
                    ordinal=ordinal,
                    state=info.get("state", StageState.NOT_STARTED),
                    entered_at=info.get("entered_at"),
                    actions=[
                        ActionStatus(action_id=action_id, **action)
                        for action_id, action in info.get("actions", {}).items()
                    ],
                )
            )

        refs: set[str] = set()
        for entry in entries:
            refs.update(entry.artifact_references)

        return RunSnapshot(
            run_id=run_id,
            stages=stages,
            artifact_count=len(refs),
            chain_valid=self._check_chain_valid(run_id),
            pipeline_version=entries[-1].pipeline_version if entries else "0.1.0",
            last_updated=entries[-1].timestamp_utc if entries else datetime.now(timezone.utc),
            **run_info,
        )

    @staticmethod
    def _run_info(entries: list[LedgerEntry]) -> dict[str, Any]:
        info: dict[str, Any] = {}
        for entry in entries:
            if entry.stage_id != RUN_SCOPE:
                continue
            detail = entry.detail
            if entry.state_transition == "pending->running":
                info["pipeline_name"] = detail.get("pipeline", "")
                info["environment"] = detail.get("environment", "")
                info["branch"] = detail.get("branch", "")
                info["stages"] = detail.get("stages", "")
                info["status"] = "running"
            elif entry.state_transition == "source->fetched":
                info["source_revision"] = detail.get("revision")
            elif entry.state_transition.startswith("running->"):
                info["status"] = entry.target_state
                info["cause"] = detail.get("cause")
                info["cause_type"] = detail.get("cause_type")
                info["failed_action"] = detail.get("failed_action")
        return info

    @staticmethod
    def _compute_stage_states(entries: list[LedgerEntry]) -> dict[str, dict[str, Any]]:
        """Replay ledger entries into stage_id -> {state, entered_at, actions}."""
        result: dict[str, dict[str, Any]] = {}
        for entry in entries:
            if entry.stage_id == RUN_SCOPE:
                continue
            stage = result.setdefault(
                entry.stage_id,
                {"state": StageState.NOT_STARTED, "entered_at": None, "actions": {}},
            )
            try:
                to_state = StageState(entry.target_state)
            except ValueError:
                continue

            if entry.action_id:
                action = stage["actions"].setdefault(
                    entry.action_id, {"state": StageState.NOT_STARTED, "detail": {}, "artifact_refs": []}
                )
                action["state"] = to_state
                action["detail"] = {**action["detail"], **entry.detail}
                action["artifact_refs"].extend(entry.artifact_references)
            else:
                stage["state"] = to_state
                stage["entered_at"] = entry.timestamp_utc
        return result

    def _check_chain_valid(self, run_id: str) -> bool:
        """Check hash chain integrity without raising."""
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            return False
