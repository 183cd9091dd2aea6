"""Per-database migration lock - the system's only mutual-exclusion primitive.

The lock lives in a SQLite table keyed by database id, so it holds across
every pipeline instance and process that points at the same lock file.
Acquisition never waits: if a row for the database already exists the
attempt fails immediately with ``MigrationConflict``.

Usage::

    lock = MigrationLock(Path(".stagecraft/locks.db"))
    with lock.hold("quickstart-db", holder="run-42/run-migrations"):
        runner.migrate(...)

The context manager releases on every exit path.  Release only deletes the
row owned by the same holder, so a stale release cannot drop somebody
else's lock.
``force_release`` is the operator escape hatch for a lock whose holder
is gone (``stagecraft locks release``).
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from stagecraft.core.errors import MigrationConflict

logger = logging.getLogger(__name__)

_CREATE_LOCKS = """
CREATE TABLE IF NOT EXISTS migration_locks (
    database_id   TEXT PRIMARY KEY,
    holder        TEXT NOT NULL,
    acquired_at   TEXT NOT NULL
);
"""


class MigrationLock:
    """Non-blocking, per-database exclusive lock.

    Parameters
    ----------
    db_path:
        SQLite file holding the lock table.  Every pipeline instance that
        must be mutually exclusive has to share it.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            with conn:
                conn.execute(_CREATE_LOCKS)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: explicit BEGIN IMMEDIATE below takes the
        # write lock up front, so two acquirers cannot both see "free".
        conn = sqlite3.connect(
            str(self._db_path), timeout=5.0, isolation_level=None, check_same_thread=False
        )
        return conn

    def try_acquire(self, database_id: str, holder: str) -> None:
        """Take the lock or raise ``MigrationConflict`` immediately."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    "INSERT INTO migration_locks (database_id, holder, acquired_at) "
                    "VALUES (?, ?, ?)",
                    (database_id, holder, datetime.now(timezone.utc).isoformat()),
                )
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                current = self.holder_of(database_id) or "unknown"
                logger.warning(
                    "Migration lock for %s refused to %s: held by %s",
                    database_id,
                    holder,
                    current,
                )
                raise MigrationConflict(database_id, current) from None
            conn.execute("COMMIT")
        finally:
            conn.close()
        logger.info("Migration lock for %s acquired by %s", database_id, holder)

    def release(self, database_id: str, holder: str) -> bool:
        """Release the lock if *holder* owns it.  Returns whether a row was removed."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM migration_locks WHERE database_id = ? AND holder = ?",
                (database_id, holder),
            )
            released = cursor.rowcount > 0
        finally:
            conn.close()
        if released:
            logger.info("Migration lock for %s released by %s", database_id, holder)
        else:
            logger.warning(
                "Migration lock for %s was not held by %s at release", database_id, holder
            )
        return released

    def force_release(self, database_id: str) -> str | None:
        """Drop the lock for *database_id* whoever holds it.

        For an operator clearing a lock left behind by a process that died
        mid-migration.  Returns the holder that was removed, or None if the
        database was not locked.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT holder FROM migration_locks WHERE database_id = ?",
                (database_id,),
            ).fetchone()
            conn.execute("DELETE FROM migration_locks WHERE database_id = ?", (database_id,))
            conn.execute("COMMIT")
        finally:
            conn.close()
        if row is None:
            logger.info("Migration lock for %s was not held; nothing to release", database_id)
            return None
        logger.warning(
            "Migration lock for %s forcibly released (was held by %s)", database_id, row[0]
        )
        return row[0]

    def held(self) -> list[tuple[str, str, str]]:
        """Every held lock as ``(database_id, holder, acquired_at)``."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT database_id, holder, acquired_at FROM migration_locks "
                "ORDER BY database_id"
            ).fetchall()
        finally:
            conn.close()
        return [(r[0], r[1], r[2]) for r in rows]

    def holder_of(self, database_id: str) -> str | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT holder FROM migration_locks WHERE database_id = ?",
                (database_id,),
            ).fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def is_held(self, database_id: str) -> bool:
        return self.holder_of(database_id) is not None

    @contextmanager
    def hold(self, database_id: str, holder: str) -> Iterator[None]:
        """Hold the lock for the duration of the block; always release."""
        self.try_acquire(database_id, holder)
        try:
            yield
        finally:
            self.release(database_id, holder)
