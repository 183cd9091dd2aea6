"""Run ledger entry model - the stage-by-stage status trail.

One entry per state transition of a run, a stage, or an action.  Entries
are hash-chained per run so the trail cannot be silently rewritten.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

# stage_id used for run-level entries (pre-flight, final status).
RUN_SCOPE = "_run"


class LedgerEntry(BaseModel):
    """A single entry in the append-only run ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    action_id: str = ""  # empty for stage- and run-level entries
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    artifact_references: list[str] = []
    detail: dict[str, str] = {}
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def target_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
