"""Protocols for everything the orchestrator deploys against.

The orchestrator never talks to a cloud provider, registry, or database
directly.  Each external concern is a Protocol here; ``stagecraft.local``
provides in-memory implementations for local runs and tests, and real
backends only need to satisfy the same method shapes.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from stagecraft.models.artifacts import SourceRevision
from stagecraft.models.runtime import RuntimeConfig
from stagecraft.models.secrets import DatabaseSecretRefs, ResolvedConnection, SecretRef


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


@runtime_checkable
class SourceProvider(Protocol):
    """Retrieves a branch head.  Raises ``SourceUnavailable`` on failure."""

    def fetch(self, repository: str, branch: str) -> SourceRevision:
        ...


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


@runtime_checkable
class BuildExecutor(Protocol):
    """Runs compile + containerize in an isolated build environment.

    Returns a local image id for the registry to push.
    """

    def build(
        self,
        source: SourceRevision,
        *,
        source_path: str,
        tag: str,
        env: dict[str, str],
    ) -> str:
        ...


@runtime_checkable
class ImageRegistry(Protocol):
    """Pushes a locally built image; returns the registry-qualified reference.

    The image is pushed under *tag* and under every one of *extra_tags*;
    the returned reference always names *tag*.
    """

    def push(
        self,
        local_image: str,
        repository_uri: str,
        tag: str,
        *,
        extra_tags: tuple[str, ...] = (),
    ) -> str:
        ...


@runtime_checkable
class InfrastructureSynthesizer(Protocol):
    """Synthesizes and applies the environment's infrastructure stack.

    Returns a JSON-serializable summary (stack name, outputs).
    """

    def synthesize(self, source: SourceRevision, *, environment: str, stack_name: str) -> dict[str, Any]:
        ...


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@runtime_checkable
class SecretResolver(Protocol):
    def resolve(self, ref: SecretRef) -> str:
        ...


@runtime_checkable
class MigrationRunner(Protocol):
    """Applies pending migrations.  Returns the ids of migrations applied.

    Must be naturally idempotent: running again with nothing pending
    applies nothing.
    """

    def migrate(self, source: SourceRevision, connection: ResolvedConnection) -> list[str]:
        ...


# ---------------------------------------------------------------------------
# Runtime health
# ---------------------------------------------------------------------------


@runtime_checkable
class HealthProbe(Protocol):
    """Reports whether a task passes its load balancer health check."""

    def is_healthy(self, task_id: str, image_ref: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# Provisioning layer
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_id: str
    default_database_name: str
    username: str = ""


class ConnectionSecretHandle(BaseModel):
    """What the provisioning layer hands back for a database: references only."""

    model_config = ConfigDict(frozen=True)

    database_id: str
    secret_id: str

    def refs(self) -> DatabaseSecretRefs:
        return DatabaseSecretRefs.from_secret(self.database_id, self.secret_id)


@runtime_checkable
class Provisioner(Protocol):
    """Creates the runtime and database the pipeline deploys against.

    The returned runtime handle is a ``stagecraft.core.runtime.ServiceRuntime``
    (or anything with the same interface).
    """

    def create_runtime(self, config: RuntimeConfig) -> Any:
        ...

    def create_database(self, config: DatabaseConfig) -> ConnectionSecretHandle:
        ...

