"""Deploy action - roll the built image out to the service runtime.

Consumes exactly one image definition (``{serviceName, imageUri}``) and
hands the image to the runtime's ``RolloutController``.  Redeploying the
image that is already running is a no-op.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from stagecraft.actions.base import ActionContext, ActionOutcome, BaseAction
from stagecraft.core.errors import DeployError
from stagecraft.core.rollout import RolloutController
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import Artifact, ArtifactKind, ArtifactRef, ImageDefinition
from stagecraft.models.runtime import DeployResult

logger = logging.getLogger(__name__)


class DeployAction(BaseAction):
    kind: ClassVar[ActionKind] = ActionKind.DEPLOY

    def __init__(self, spec: ActionSpec, *, controller: RolloutController) -> None:
        super().__init__(spec)
        self.controller = controller

    def image_definition(self, inputs: dict[ArtifactRef, Artifact]) -> ImageDefinition:
        images = [a for a in inputs.values() if a.kind == ArtifactKind.IMAGE_REF]
        if len(images) != 1:
            raise DeployError(f"Deploy {self.id} expects one image definition, got {len(images)}")
        definition = ImageDefinition.model_validate(images[0].payload)
        service = self.controller.runtime.service_name
        if definition.service_name != service:
            raise DeployError(
                f"Image definition targets service {definition.service_name!r}, "
                f"but this action deploys {service!r}"
            )
        return definition

    def execute(
        self, context: ActionContext, inputs: dict[ArtifactRef, Artifact]
    ) -> ActionOutcome:
        definition = self.image_definition(inputs)
        result: DeployResult = self.controller.deploy(definition.image_uri)
        if result.no_op:
            logger.info("[%s] %s: %s already running", context.run_id, self.id, definition.image_uri)
        return ActionOutcome(
            detail={
                "image_uri": definition.image_uri,
                "previous_image_ref": result.previous_image_ref or "",
                "rollout": " -> ".join(s.value for s in result.history),
                "no_op": str(result.no_op).lower(),
            }
        )
