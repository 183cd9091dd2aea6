"""Migration action - apply schema migrations under the per-database lock.

At most one migration runs against a database at any time, across every
pipeline instance sharing the lock file.  A second attempt fails fast with
``MigrationConflict``; it is never queued and never retried here.  The
lock is released on success and on failure.

Connection parameters arrive as secret references.  They are resolved
only for the duration of the run, as ``SecretStr`` values, and are never
logged or written to an artifact.

Ordering note: in the default pipeline this action shares a stage with the
deploy action and the two are unordered.  New code can briefly run against
the pre-migration schema.  That window is accepted, not a bug to paper over
with an inferred dependency.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from pydantic import SecretStr

from stagecraft.actions.base import ActionContext, ActionOutcome, BaseAction
from stagecraft.actions.build import source_from_inputs
from stagecraft.collaborators import MigrationRunner, SecretResolver
from stagecraft.core.errors import MigrationFailure, StagecraftError
from stagecraft.core.migration_lock import MigrationLock
from stagecraft.models.actions import ActionKind, ActionSpec
from stagecraft.models.artifacts import Artifact, ArtifactRef
from stagecraft.models.secrets import DatabaseSecretRefs, ResolvedConnection, SecretRef

logger = logging.getLogger(__name__)


class MigrationAction(BaseAction):
    """Runs pending migrations for one database.

    Parameters
    ----------
    spec:
        A migrate spec (``concurrency_limit`` is necessarily 1).  Any
        ``PG*`` entry in its ``execution_env`` must be a secret reference.
    database:
        Secret references for the target database; ``database_id`` is the
        lock key.
    lock / resolver / runner:
        Shared lock, secret resolution, and the migration tool.
    """

    kind: ClassVar[ActionKind] = ActionKind.MIGRATE

    def __init__(
        self,
        spec: ActionSpec,
        *,
        database: DatabaseSecretRefs,
        lock: MigrationLock,
        resolver: SecretResolver,
        runner: MigrationRunner,
    ) -> None:
        super().__init__(spec)
        literal = sorted(
            key for key, value in spec.execution_env.items()
            if key.startswith("PG") and not SecretRef.is_ref(value)
        )
        if literal:
            raise ValueError(
                f"Migration action {spec.id!r} has literal connection values for {literal}; "
                "use secret references"
            )
        self.database = database
        self.lock = lock
        self.resolver = resolver
        self.runner = runner

    def _resolve(self) -> ResolvedConnection:
        db = self.database
        return ResolvedConnection(
            host=SecretStr(self.resolver.resolve(db.host)),
            port=SecretStr(self.resolver.resolve(db.port)),
            username=SecretStr(self.resolver.resolve(db.username)),
            password=SecretStr(self.resolver.resolve(db.password)),
            dbname=SecretStr(self.resolver.resolve(db.dbname)),
        )

    def execute(
        self, context: ActionContext, inputs: dict[ArtifactRef, Artifact]
    ) -> ActionOutcome:
        source = source_from_inputs(inputs)
        holder = f"{context.run_id}/{self.id}"
        database_id = self.database.database_id

        # MigrationConflict propagates from here untouched.
        with self.lock.hold(database_id, holder):
            try:
                applied = self.runner.migrate(source, self._resolve())
            except StagecraftError:
                raise
            except Exception as exc:
                raise MigrationFailure(
                    f"Migrations against {database_id} failed: {type(exc).__name__}: {exc}"
                ) from exc

        logger.info(
            "[%s] %s applied %d migration(s) to %s",
            context.run_id, self.id, len(applied), database_id,
        )
        return ActionOutcome(
            detail={
                "database_id": database_id,
                "applied": ",".join(applied),
                "applied_count": str(len(applied)),
            }
        )
