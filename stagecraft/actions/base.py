"""Abstract base action with an enforced lifecycle.

Every concrete action inherits from BaseAction and implements only
``execute()``.  The ``run_action()`` wrapper is **not overridable** - it
enforces the canonical ordering:

    resolve inputs -> execute -> check declared outputs -> publish

Publishing is the last step and is atomic, so an action that raises
anywhere before it leaves the artifact store untouched, and an action
is only ever reported successful after its outputs are visible.
"""

from __future__ import annotations

import abc
import logging
import uuid
from typing import Any, ClassVar, final

from pydantic import BaseModel, ConfigDict

from stagecraft.core.artifact_store import ArtifactStore
from stagecraft.core.hasher import content_digest
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import Artifact, ArtifactKind, ArtifactRef

logger = logging.getLogger(__name__)


class ActionContext(BaseModel):
    """What an action sees while it runs."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    run_id: str
    stage_id: str
    environment: str
    branch: str
    store: ArtifactStore


class ActionOutcome(BaseModel):
    """What an action hands back: artifacts to publish plus a short detail map."""

    model_config = ConfigDict(frozen=True)

    artifacts: list[Artifact] = []
    detail: dict[str, str] = {}


class BaseAction(abc.ABC):
    """Abstract base for build, migrate, and deploy actions.

    Subclasses set ``kind`` and implement ``execute(context, inputs)``.
    Subclasses **must not** override ``run_action()``.
    """

    kind: ClassVar[ActionKind]

    def __init__(self, spec: ActionSpec) -> None:
        if spec.kind != self.kind:
            raise ValueError(
                f"{type(self).__name__} needs a {self.kind.value} spec, got {spec.kind.value}"
            )
        self.spec = spec

    @property
    def id(self) -> str:
        return self.spec.id

    @abc.abstractmethod
    def execute(
        self, context: ActionContext, inputs: dict[ArtifactRef, Artifact]
    ) -> ActionOutcome:
        """Do the work.  Raise a ``StagecraftError`` subclass on failure."""
        ...

    # ------------------------------------------------------------------
    # Lifecycle - NOT overridable
    # ------------------------------------------------------------------

    @final
    def run_action(self, context: ActionContext) -> ActionOutcome:
        """Execute the full action lifecycle.  **Do not override.**"""
        inputs = {ref: context.store.read(ref) for ref in self.spec.inputs}
        logger.info(
            "[%s] %s starting with inputs %s",
            context.run_id,
            self.id,
            [ref.key for ref in self.spec.inputs] or "-",
        )

        outcome = self.execute(context, inputs)

        declared = {ref.key for ref in self.spec.outputs}
        produced = {a.ref.key for a in outcome.artifacts}
        if produced != declared:
            raise RuntimeError(
                f"Action {self.id} declared outputs {sorted(declared)} "
                f"but produced {sorted(produced)}"
            )
        context.store.write_many(outcome.artifacts)
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def output_ref(self, slot: str | None = None) -> ArtifactRef:
        """The declared output for *slot*, or the only one if *slot* is None."""
        if slot is None:
            if len(self.spec.outputs) != 1:
                raise ValueError(f"Action {self.id} does not have exactly one output")
            return self.spec.outputs[0]
        for ref in self.spec.outputs:
            if ref.slot == slot:
                return ref
        raise KeyError(f"Action {self.id} declares no output slot {slot!r}")

    @staticmethod
    def make_artifact(
        ref: ArtifactRef,
        kind: ArtifactKind,
        *,
        version: str,
        payload: dict[str, Any],
        payload_ref: str = "",
    ) -> Artifact:
        return Artifact(
            id=f"art-{uuid.uuid4().hex[:12]}",
            produced_by_stage_id=ref.stage_id,
            slot=ref.slot,
            kind=kind,
            version=version,
            payload=payload,
            payload_ref=payload_ref,
            digest=content_digest(payload),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"
