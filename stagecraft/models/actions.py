"""Action topology model - what an action reads, writes, and how often it may run."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

from stagecraft.models.artifacts import ArtifactRef


class ActionKind(str, Enum):
    BUILD = "build"
    MIGRATE = "migrate"
    DEPLOY = "deploy"


class ActionSpec(BaseModel):
    """Declarative description of one action.

    ``execution_env`` holds the variables the action's isolated
    environment sees.  Values that are secrets must be ``SecretRef``
    strings (``secret://...``), never literals.

    ``concurrency_limit`` is the number of simultaneous executions allowed
    for this action's target.  Migrations are always 1.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ActionKind
    inputs: tuple[ArtifactRef, ...] = ()
    outputs: tuple[ArtifactRef, ...] = ()
    execution_env: dict[str, str] = {}
    concurrency_limit: int | None = None

    @model_validator(mode="after")
    def _check_kind_constraints(self) -> ActionSpec:
        if self.kind == ActionKind.MIGRATE:
            if self.concurrency_limit != 1:
                raise ValueError(
                    f"Migration action {self.id!r} must have concurrency_limit=1, "
                    f"got {self.concurrency_limit!r}"
                )
            if self.outputs:
                raise ValueError(f"Migration action {self.id!r} cannot emit artifacts")
        if self.kind == ActionKind.DEPLOY and self.outputs:
            raise ValueError(f"Deploy action {self.id!r} cannot emit artifacts")
        if self.concurrency_limit is not None and self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        return self
