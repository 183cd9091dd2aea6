"""Append-only, hash-chained run ledger backed by SQLite.

The ledger is the status trail of every pipeline run.  The monitor is a
projection of it; it never computes state of its own.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per run: each entry includes SHA-256 of the previous entry.
- Appends are serialized in-process, since actions of one stage record
  their transitions from parallel threads.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from stagecraft.core.hasher import compute_entry_hash
from stagecraft.models.ledger import LedgerEntry

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    action_id             TEXT NOT NULL DEFAULT '',
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    artifact_refs_json    TEXT NOT NULL DEFAULT '[]',
    detail_json           TEXT NOT NULL DEFAULT '{}',
    pipeline_version      TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_COLUMNS = (
    "entry_id, run_id, stage_id, action_id, state_transition, timestamp_utc, "
    "artifact_refs_json, detail_json, pipeline_version, previous_entry_hash, entry_hash"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained run ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(_CREATE_LEDGER)
                conn.execute(_CREATE_IDX_RUN)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry, computing its hash chain link.

        Returns the sealed entry with ``previous_entry_hash`` and
        ``entry_hash`` set.  This is the ONLY write method.
        """
        with self._lock:
            previous_hash = self._get_latest_hash(entry.run_id)

            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""

            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )
            self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    f"INSERT INTO run_ledger ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        entry.entry_id,
                        entry.run_id,
                        entry.stage_id,
                        entry.action_id,
                        entry.state_transition,
                        entry.timestamp_utc.isoformat(),
                        json.dumps(entry.artifact_references),
                        json.dumps(entry.detail, sort_keys=True),
                        entry.pipeline_version,
                        entry.previous_entry_hash,
                        entry.entry_hash,
                    ),
                )
        finally:
            conn.close()

    def _get_latest_hash(self, run_id: str) -> str:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        finally:
            conn.close()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return distinct run_ids, most recently started first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT run_id, MIN(id) AS first_id FROM run_ledger "
                "GROUP BY run_id ORDER BY first_id DESC"
            ).fetchall()
        finally:
            conn.close()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            entry_id,
            run_id,
            stage_id,
            action_id,
            state_transition,
            timestamp_utc,
            artifact_refs_json,
            detail_json,
            pipeline_version,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            action_id=action_id,
            state_transition=state_transition,
            timestamp_utc=datetime.fromisoformat(timestamp_utc),
            artifact_references=json.loads(artifact_refs_json),
            detail=json.loads(detail_json),
            pipeline_version=pipeline_version,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
