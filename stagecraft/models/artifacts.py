"""Artifact models - data handed from one stage to the next.

Artifacts are addressed by ``(stage_id, slot)``, not by content hash:
re-running a stage overwrites whatever the slot held before.  A written
artifact is immutable; an overwrite replaces the whole record.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Stage id reserved for the artifact produced by source retrieval, which
# runs before stage 0.
SOURCE_STAGE_ID = "source"
SOURCE_SLOT = "source"


class ArtifactKind(str, Enum):
    SOURCE = "source"
    IMAGE_REF = "image-ref"
    MANIFEST = "manifest"


class ArtifactRef(BaseModel):
    """Names an artifact slot: the stage that produces it plus a slot name."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    slot: str

    @property
    def key(self) -> str:
        return f"{self.stage_id}/{self.slot}"

    def __str__(self) -> str:
        return self.key


SOURCE_REF = ArtifactRef(stage_id=SOURCE_STAGE_ID, slot=SOURCE_SLOT)


class Artifact(BaseModel):
    """A written artifact.

    ``payload`` carries the descriptor (never secrets).  ``version`` is
    derived from the input's identity, typically a source revision, so
    two builds of the same revision share a version.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    produced_by_stage_id: str
    slot: str
    kind: ArtifactKind
    version: str = ""
    payload_ref: str = ""
    payload: dict[str, Any] = {}
    digest: str = ""
    written_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def ref(self) -> ArtifactRef:
        return ArtifactRef(stage_id=self.produced_by_stage_id, slot=self.slot)


class SourceRevision(BaseModel):
    """What source retrieval hands to the first stage."""

    model_config = ConfigDict(frozen=True)

    repository: str
    branch: str
    revision: str
    bundle_path: str = ""

    @property
    def short_revision(self) -> str:
        """First nine characters of the revision, used as the image tag."""
        return self.revision[:9]


class ImageDefinition(BaseModel):
    """The build -> deploy descriptor: which image a service should run.

    Serialized in the ``imagedefinitions.json`` layout, a one-element JSON
    list of ``{"name": ..., "imageUri": ...}``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    service_name: str = Field(alias="serviceName")
    image_uri: str = Field(alias="imageUri")

    def to_image_definitions_json(self) -> str:
        return json.dumps([{"name": self.service_name, "imageUri": self.image_uri}])

    @classmethod
    def from_image_definitions_json(cls, raw: str) -> ImageDefinition:
        entries = json.loads(raw)
        if not isinstance(entries, list) or len(entries) != 1:
            raise ValueError("imagedefinitions must be a one-element list")
        entry = entries[0]
        return cls(serviceName=entry["name"], imageUri=entry["imageUri"])
