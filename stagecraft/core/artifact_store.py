"""Slot-addressed artifact store.

Storage layout: {base_path}/{stage_id}/{slot}.json

Artifacts are keyed by the stage that produced them and a slot name.
Writing a slot again replaces the previous artifact (re-running a stage
overwrites its output).  Writes are atomic: each file is written to a
temporary sibling and moved into place with ``os.replace``, and a batch of
outputs becomes visible to readers all at once.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from stagecraft.core.errors import ArtifactNotFoundError
from stagecraft.models.artifacts import Artifact, ArtifactRef

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Filesystem-backed store of the latest artifact per ``(stage, slot)``.

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        # Readers and writers share one lock so a multi-artifact commit is
        # never observed half-applied.
        self._lock = threading.RLock()

    def _artifact_path(self, ref: ArtifactRef) -> Path:
        return self._base / ref.stage_id / f"{ref.slot}.json"

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, artifact: Artifact) -> Artifact:
        """Atomically write a single artifact, replacing the slot's prior one."""
        return self.write_many([artifact])[0]

    def write_many(self, artifacts: list[Artifact]) -> list[Artifact]:
        """Atomically publish a batch of artifacts.

        Every payload is serialized to a temp file first; only when all of
        them are on disk are they moved into place.  If anything fails
        before the move, no slot changes.
        """
        if not artifacts:
            return []
        staged: list[tuple[Path, Path]] = []
        with self._lock:
            try:
                for artifact in artifacts:
                    target = self._artifact_path(artifact.ref)
                    raw = artifact.model_dump_json()
                    target.parent.mkdir(parents=True, exist_ok=True)
                    fd, tmp_name = tempfile.mkstemp(
                        dir=target.parent, prefix=f".{artifact.slot}.", suffix=".tmp"
                    )
                    staged.append((Path(tmp_name), target))
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(raw)
            except BaseException:
                for tmp, _ in staged:
                    tmp.unlink(missing_ok=True)
                raise

            for tmp, target in staged:
                os.replace(tmp, target)

        for artifact in artifacts:
            logger.info(
                "Published artifact %s (%s, version=%s)",
                artifact.ref.key,
                artifact.kind.value,
                artifact.version or "-",
            )
        return list(artifacts)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, ref: ArtifactRef) -> Artifact:
        """Return the current artifact for *ref*.

        Raises ``ArtifactNotFoundError`` if the slot has never been written.
        """
        path = self._artifact_path(ref)
        with self._lock:
            if not path.exists():
                raise ArtifactNotFoundError(f"Artifact not found: {ref.key}")
            raw = path.read_text(encoding="utf-8")
        return Artifact.model_validate_json(raw)

    def exists(self, ref: ArtifactRef) -> bool:
        with self._lock:
            return self._artifact_path(ref).exists()

    def list_refs(self) -> list[ArtifactRef]:
        """Every written slot, sorted by key."""
        with self._lock:
            refs = [
                ArtifactRef(stage_id=path.parent.name, slot=path.stem)
                for path in self._base.glob("*/*.json")
            ]
        return sorted(refs, key=lambda r: r.key)
