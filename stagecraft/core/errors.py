"""Error taxonomy for pipeline runs.

Every action-level failure surfaces as one of these.  The sequencer never
swallows them: the first one raised in a run becomes the run's cause.
``MigrationConflict`` is the only designed-for-concurrency case; it is
raised immediately and never retried.

Capacity bound violations are not represented here.  The runtime clamps
every desired count into ``[min_capacity, max_capacity]``.
"""

from __future__ import annotations


class StagecraftError(RuntimeError):
    """Base class for all orchestrator errors."""


class PipelineValidationError(StagecraftError):
    """Raised at construction when the pipeline topology is invalid."""


class UnmappedEnvironmentError(StagecraftError, KeyError):
    """Raised when strict branch resolution finds no entry for an environment."""


class SourceUnavailable(StagecraftError):
    """Source retrieval failed; the run aborts before any stage starts."""


class ArtifactNotFoundError(StagecraftError, LookupError):
    """Raised when an action reads an artifact slot nobody has written."""


class BuildFailure(StagecraftError):
    """A build, containerize, or push step failed.  No artifact is published."""


class InfrastructureFailure(StagecraftError):
    """Infrastructure synthesis or apply failed."""


class MigrationConflict(StagecraftError):
    """Another migration already holds the lock for this database.

    Raised immediately instead of waiting.  Surfaced to the operator and
    never retried automatically.
    """

    def __init__(self, database_id: str, holder: str) -> None:
        self.database_id = database_id
        self.holder = holder
        super().__init__(
            f"Migration already in progress for database {database_id!r} "
            f"(held by {holder!r})"
        )


class MigrationFailure(StagecraftError):
    """The migration ran and failed."""


class DeployError(StagecraftError):
    """Base for deploy-time failures."""


class DeployHealthCheckTimeout(DeployError):
    """New tasks did not become healthy within the grace window.

    By the time this is raised the runtime has already been rolled back
    to the previous image.
    """

    def __init__(self, image_ref: str, restored_ref: str | None, waited: float) -> None:
        self.image_ref = image_ref
        self.restored_ref = restored_ref
        self.waited = waited
        super().__init__(
            f"Health checks for {image_ref!r} did not pass within {waited:.1f}s; "
            f"rolled back to {restored_ref!r}"
        )


class RollbackFailure(DeployError):
    """Rollback did not converge.  Requires operator intervention."""


class RolloutSuperseded(DeployError):
    """Another writer changed the runtime's image while this rollout ran.

    Only this rollout's new tasks are stopped; the image the other writer
    installed stays current.
    """

    def __init__(self, image_ref: str, expected: str | None, found: str | None) -> None:
        self.image_ref = image_ref
        self.expected = expected
        self.found = found
        super().__init__(
            f"Runtime image changed during rollout of {image_ref!r} "
            f"(expected {expected!r}, found {found!r})"
        )
