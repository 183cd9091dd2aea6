"""Build action - compile, containerize, push, and emit an image definition.

The image is tagged with the first nine characters of the source
revision, so two builds of one revision share a tag and builds of
different revisions never do.  The same image is also pushed under
``latest``; the image definition always names the revision tag.  If the build or the push fails, the action
raises ``BuildFailure`` and publishes nothing.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from stagecraft.actions.base import ActionContext, ActionOutcome, BaseAction
from stagecraft.collaborators import BuildExecutor, ImageRegistry
from stagecraft.core.errors import BuildFailure, StagecraftError
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import (
    Artifact,
    ArtifactKind,
    ArtifactRef,
    ImageDefinition,
    SourceRevision,
)

logger = logging.getLogger(__name__)

IMAGE_DEFINITIONS_FILE = "imagedefinitions.json"


def source_from_inputs(inputs: dict[ArtifactRef, Artifact]) -> SourceRevision:
    """Find the single source artifact among an action's inputs."""
    sources = [a for a in inputs.values() if a.kind == ArtifactKind.SOURCE]
    if len(sources) != 1:
        raise ValueError(f"Expected exactly one source input, found {len(sources)}")
    return SourceRevision.model_validate(sources[0].payload)


class BuildAction(BaseAction):
    """Builds the service image and writes its ``ImageDefinition`` manifest.

    Parameters
    ----------
    spec:
        Must declare one source input and one output slot.
    service_name:
        Name written into the image definition.
    repository_uri:
        Registry repository the image is pushed to.
    executor / registry:
        Build and push backends.
    source_path:
        Sub-directory of the source bundle to build.
    extra_tags:
        Tags pushed next to the revision tag.
    """

    kind: ClassVar[ActionKind] = ActionKind.BUILD

    def __init__(
        self,
        spec: ActionSpec,
        *,
        service_name: str,
        repository_uri: str,
        executor: BuildExecutor,
        registry: ImageRegistry,
        source_path: str = ".",
        extra_tags: tuple[str, ...] = ("latest",),
    ) -> None:
        super().__init__(spec)
        self.extra_tags = extra_tags
        self.service_name = service_name
        self.repository_uri = repository_uri
        self.executor = executor
        self.registry = registry
        self.source_path = source_path

    def execute(
        self, context: ActionContext, inputs: dict[ArtifactRef, Artifact]
    ) -> ActionOutcome:
        source = source_from_inputs(inputs)
        tag = source.short_revision
        if not tag:
            raise BuildFailure(f"Source for {context.branch!r} has no revision to tag from")

        try:
            local_image = self.executor.build(
                source,
                source_path=self.source_path,
                tag=tag,
                env=dict(self.spec.execution_env),
            )
        except StagecraftError:
            raise
        except Exception as exc:
            raise BuildFailure(f"Build of {source.revision} failed: {exc}") from exc

        try:
            image_uri = self.registry.push(
                local_image, self.repository_uri, tag, extra_tags=self.extra_tags
            )
        except StagecraftError:
            raise
        except Exception as exc:
            raise BuildFailure(
                f"Push of {self.repository_uri}:{tag} failed: {exc}"
            ) from exc

        definition = ImageDefinition(serviceName=self.service_name, imageUri=image_uri)
        logger.info("[%s] %s built %s", context.run_id, self.id, image_uri)
        artifact = self.make_artifact(
            self.output_ref(),
            ArtifactKind.IMAGE_REF,
            version=tag,
            payload=definition.model_dump(by_alias=True),
            payload_ref=IMAGE_DEFINITIONS_FILE,
        )
        return ActionOutcome(
            artifacts=[artifact],
            detail={"image_uri": image_uri, "revision": source.revision},
        )
