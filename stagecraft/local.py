"""In-memory collaborator backends for local runs and tests.

Each class satisfies one Protocol from ``stagecraft.collaborators``.  None of
them talk to a network, a registry, or a database; they record what was
asked of them so callers can inspect it afterwards.

Failure injection is explicit: every backend that can fail in production
takes a flag or a hook that makes it fail here.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from typing import Any

from stagecraft.collaborators import ConnectionSecretHandle, DatabaseConfig
from stagecraft.core.errors import SourceUnavailable
from stagecraft.core.runtime import ServiceRuntime
from stagecraft.models.artifacts import SourceRevision
from stagecraft.models.runtime import RuntimeConfig
from stagecraft.models.secrets import ResolvedConnection, SecretRef

logger = logging.getLogger(__name__)

DEFAULT_REVISION = "abc123def"


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class LocalSourceProvider:
    """Serves a fixed revision per branch.

    Parameters
    ----------
    revisions:
        branch -> revision.  Branches not listed get *default_revision*.
    default_revision:
        Revision for unlisted branches.
    unavailable:
        Branches whose retrieval fails with ``SourceUnavailable``.
    """

    def __init__(
        self,
        revisions: dict[str, str] | None = None,
        *,
        default_revision: str = DEFAULT_REVISION,
        unavailable: set[str] | None = None,
    ) -> None:
        self._revisions = dict(revisions or {})
        self.default_revision = default_revision
        self.unavailable = set(unavailable or ())
        self.fetches: list[tuple[str, str]] = []

    def set_revision(self, branch: str, revision: str) -> None:
        self._revisions[branch] = revision

    def fetch(self, repository: str, branch: str) -> SourceRevision:
        self.fetches.append((repository, branch))
        if branch in self.unavailable:
            raise SourceUnavailable(f"Branch {branch!r} of {repository} is unavailable")
        revision = self._revisions.get(branch, self.default_revision)
        return SourceRevision(
            repository=repository,
            branch=branch,
            revision=revision,
            bundle_path=f"{repository}/{branch}/{revision}.zip",
        )


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class LocalBuildExecutor:
    """Pretends to compile and containerize; returns a local image id."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.builds: list[tuple[str, str, dict[str, str]]] = []

    def build(
        self,
        source: SourceRevision,
        *,
        source_path: str,
        tag: str,
        env: dict[str, str],
    ) -> str:
        if self.fail:
            raise RuntimeError(f"compilation of {source_path} failed")
        self.builds.append((source.revision, tag, dict(env)))
        return f"local/{source.repository}:{tag}"


class LocalImageRegistry:
    """Keeps pushed images in a dict keyed by registry-qualified reference."""

    def __init__(self, *, fail_pushes: bool = False) -> None:
        self.fail_pushes = fail_pushes
        self.images: dict[str, str] = {}

    def push(
        self,
        local_image: str,
        repository_uri: str,
        tag: str,
        *,
        extra_tags: tuple[str, ...] = (),
    ) -> str:
        if self.fail_pushes:
            raise ConnectionError(f"registry {repository_uri} refused the push")
        for name in (tag, *extra_tags):
            self.images[f"{repository_uri}:{name}"] = local_image
        return f"{repository_uri}:{tag}"


class LocalSynthesizer:
    """Records each stack it is asked to apply."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.stacks: list[tuple[str, str, str]] = []

    def synthesize(
        self, source: SourceRevision, *, environment: str, stack_name: str
    ) -> dict[str, Any]:
        if self.fail:
            raise RuntimeError(f"stack {stack_name} rolled back during apply")
        self.stacks.append((stack_name, environment, source.revision))
        return {"environment": environment, "revision": source.revision}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DictSecretResolver:
    """Resolves ``SecretRef``s against ``{secret_id: {key: value}}``."""

    def __init__(self, store: dict[str, dict[str, str]] | None = None) -> None:
        self._store = store if store is not None else {}

    def put(self, secret_id: str, values: dict[str, str]) -> None:
        self._store[secret_id] = dict(values)

    def resolve(self, ref: SecretRef) -> str:
        try:
            return self._store[ref.secret_id][ref.key]
        except KeyError:
            raise LookupError(f"No secret value for {ref}") from None


class LocalMigrationRunner:
    """Applies a fixed list of migration ids, each at most once.

    Parameters
    ----------
    migrations:
        Migration ids in application order.
    on_migrate:
        Called inside ``migrate`` before anything is applied.  Tests use it
        to hold a migration open or to raise.
    """

    def __init__(
        self,
        migrations: list[str] | None = None,
        *,
        on_migrate: Callable[[], None] | None = None,
    ) -> None:
        self.migrations = list(migrations or ["0001_initial"])
        self.on_migrate = on_migrate
        self.applied: list[str] = []
        self.calls = 0
        self._lock = threading.Lock()

    def migrate(self, source: SourceRevision, connection: ResolvedConnection) -> list[str]:
        with self._lock:
            self.calls += 1
        if self.on_migrate is not None:
            self.on_migrate()
        with self._lock:
            pending = [m for m in self.migrations if m not in self.applied]
            self.applied.extend(pending)
        return pending


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class StaticHealthProbe:
    """Every task is healthy, or none is."""

    def __init__(self, healthy: bool = True) -> None:
        self.healthy = healthy

    def is_healthy(self, task_id: str, image_ref: str) -> bool:
        return self.healthy


class CallableHealthProbe:
    """Delegates to ``check(task_id, image_ref)``."""

    def __init__(self, check: Callable[[str, str], bool]) -> None:
        self._check = check

    def is_healthy(self, task_id: str, image_ref: str) -> bool:
        return self._check(task_id, image_ref)


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


class InMemoryProvisioner:
    """Creates ``ServiceRuntime``s and generated database credentials.

    Credentials go into ``resolver``; only a ``ConnectionSecretHandle``
    leaves this class.
    """

    def __init__(self, resolver: DictSecretResolver | None = None) -> None:
        self.resolver = resolver or DictSecretResolver()
        self.runtimes: dict[str, ServiceRuntime] = {}
        self.databases: dict[str, ConnectionSecretHandle] = {}

    def create_runtime(self, config: RuntimeConfig) -> ServiceRuntime:
        runtime = self.runtimes.get(config.service_name)
        if runtime is None:
            runtime = self.runtimes[config.service_name] = ServiceRuntime(config)
            logger.info("Provisioned runtime %s", config.service_name)
        return runtime

    def create_database(self, config: DatabaseConfig) -> ConnectionSecretHandle:
        handle = self.databases.get(config.database_id)
        if handle is not None:
            return handle
        secret_id = f"{config.database_id}-credentials"
        self.resolver.put(secret_id, {
            "host": f"{config.database_id}.local",
            "port": "5432",
            "username": config.username or "postgres",
            "password": secrets.token_urlsafe(24),
            "dbname": config.default_database_name,
        })
        handle = self.databases[config.database_id] = ConnectionSecretHandle(
            database_id=config.database_id, secret_id=secret_id
        )
        logger.info("Provisioned database %s", config.database_id)
        return handle
