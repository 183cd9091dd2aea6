"""Stagecraft data models - Pydantic v2, frozen (immutable).

``stagecraft.models.pipeline`` is not re-exported here: it holds concrete
actions and is imported directly.
"""

from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import (
    SOURCE_REF,
    Artifact,
    ArtifactKind,
    ArtifactRef,
    ImageDefinition,
    SourceRevision,
)
from stagecraft.models.config import (
    DEFAULT_ENVIRONMENTS,
    EnvironmentSpec,
    EnvironmentTable,
    PipelineConfig,
)
from stagecraft.models.ledger import RUN_SCOPE, LedgerEntry
from stagecraft.models.runtime import (
    ROLLOUT_TRANSITIONS,
    AutoscalingConfig,
    DeployResult,
    RolloutState,
    RuntimeConfig,
    RuntimeSnapshot,
)
from stagecraft.models.secrets import DatabaseSecretRefs, ResolvedConnection, SecretRef
from stagecraft.models.stages import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActionResult,
    StageResult,
    StageState,
)

__all__ = [
    # actions
    "ActionKind",
    "ActionSpec",
    # artifacts
    "SOURCE_REF",
    "Artifact",
    "ArtifactKind",
    "ArtifactRef",
    "ImageDefinition",
    "SourceRevision",
    # config
    "DEFAULT_ENVIRONMENTS",
    "EnvironmentSpec",
    "EnvironmentTable",
    "PipelineConfig",
    # ledger
    "RUN_SCOPE",
    "LedgerEntry",
    # runtime
    "ROLLOUT_TRANSITIONS",
    "AutoscalingConfig",
    "DeployResult",
    "RolloutState",
    "RuntimeConfig",
    "RuntimeSnapshot",
    # secrets
    "DatabaseSecretRefs",
    "ResolvedConnection",
    "SecretRef",
    # stages
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    "ActionResult",
    "StageResult",
    "StageState",
]
