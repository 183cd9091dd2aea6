"""Infrastructure action - synthesize and apply the environment's stack.

Build-shaped: reads the source bundle, hands it to the synthesizer, and
publishes a manifest artifact describing what was applied.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from stagecraft.actions.base import ActionContext, ActionOutcome, BaseAction
from stagecraft.actions.build import source_from_inputs
from stagecraft.collaborators import InfrastructureSynthesizer
from stagecraft.core.errors import InfrastructureFailure, StagecraftError
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import Artifact, ArtifactKind, ArtifactRef

logger = logging.getLogger(__name__)


class InfrastructureAction(BaseAction):
    kind: ClassVar[ActionKind] = ActionKind.BUILD

    def __init__(
        self,
        spec: ActionSpec,
        *,
        stack_name: str,
        synthesizer: InfrastructureSynthesizer,
    ) -> None:
        super().__init__(spec)
        self.stack_name = stack_name
        self.synthesizer = synthesizer

    def execute(
        self, context: ActionContext, inputs: dict[ArtifactRef, Artifact]
    ) -> ActionOutcome:
        source = source_from_inputs(inputs)
        try:
            summary = self.synthesizer.synthesize(
                source, environment=context.environment, stack_name=self.stack_name
            )
        except StagecraftError:
            raise
        except Exception as exc:
            raise InfrastructureFailure(
                f"Stack {self.stack_name} failed to deploy: {exc}"
            ) from exc

        logger.info("[%s] %s applied stack %s", context.run_id, self.id, self.stack_name)
        artifact = self.make_artifact(
            self.output_ref(),
            ArtifactKind.MANIFEST,
            version=source.short_revision,
            payload={"stack_name": self.stack_name, **summary},
        )
        return ActionOutcome(artifacts=[artifact], detail={"stack_name": self.stack_name})
