"""Pipeline topology and run result models.

A ``Pipeline`` is a declarative list of ``Stage`` value objects, built once
and validated on construction.  Executing it is the sequencer's job.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, PrivateAttr, model_validator

from stagecraft.actions.base import BaseAction
from stagecraft.core.pipeline_graph import PipelineGraph
from stagecraft.models.stages import StageResult, StageState


class Stage(BaseModel):
    """An ordered, named group of actions that may run concurrently."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    ordinal: int
    actions: tuple[BaseAction, ...]

    @property
    def action_ids(self) -> list[str]:
        return [a.id for a in self.actions]


class Pipeline(BaseModel):
    """The top-level control structure: environment, branch, and stages.

    ``branch`` is resolved once when the pipeline is created and cannot
    change afterwards.  Construction raises ``PipelineValidationError``
    if the topology breaks an ordering invariant.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    environment: str
    branch: str
    repository: str
    stages: tuple[Stage, ...]

    _graph: PipelineGraph | None = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _validate_topology(self) -> Pipeline:
        self._graph = PipelineGraph(self.stages)
        return self

    @property
    def graph(self) -> PipelineGraph:
        assert self._graph is not None
        return self._graph

    def stage(self, name: str) -> Stage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)


class PipelineStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineResult(BaseModel):
    """Outcome of one run: status, the stage-by-stage trail, and the cause."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_name: str
    environment: str
    branch: str
    status: PipelineStatus
    source_revision: str | None = None
    stages: list[StageResult] = []
    cause: str | None = None
    cause_type: str | None = None
    failed_action: str | None = None
    started_at: datetime
    finished_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineStatus.SUCCEEDED

    def stage_state(self, name: str) -> StageState:
        for stage in self.stages:
            if stage.name == name:
                return stage.state
        raise KeyError(name)
