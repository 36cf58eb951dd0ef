"""JsonFileStore — the snapshot as a pretty-printed JSON file on local disk.

This is the default store and the file the dashboard endpoint serves.

Writes go to a temp file in the same directory which then replaces the
target with os.replace(), so a crash mid-write leaves the previous snapshot
untouched and a reader never observes a half-written document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from prpulse_store.base import BaseStore
from prpulse_store.errors import CorruptSnapshotError, PersistError
from prpulse_store.models import HistorySnapshot

logger = logging.getLogger(__name__)


class JsonFileStore(BaseStore):
    """Stores the history snapshot in a single JSON file.

    The path defaults to ``commit_history.json`` in the current working
    directory. Configure via .prpulse.yml: ``snapshot_path: /srv/data/history.json``.
    """

    def __init__(self, path: str | Path = "commit_history.json"):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, quarantine: bool = True) -> HistorySnapshot:
        if not self._path.exists():
            logger.info("No snapshot at %s; starting from an empty history.", self._path)
            return HistorySnapshot()

        try:
            raw = self._path.read_bytes()
        except OSError as e:
            logger.error("Could not read snapshot %s (%s); using an empty history.", self._path, e)
            return HistorySnapshot()

        try:
            return HistorySnapshot.from_dict(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, CorruptSnapshotError) as e:
            logger.error("Snapshot %s is corrupt (%s); using an empty history.", self._path, e)
            if quarantine:
                self._quarantine()
            return HistorySnapshot()

    def save(self, snapshot: HistorySnapshot) -> None:
        directory = self._path.parent
        tmp_path = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=4)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            # mkstemp creates 0600; the snapshot is read by other processes.
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self._path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistError(f"Could not write snapshot to {self._path}: {e}") from e
        logger.debug("Saved snapshot to %s (%d projects).", self._path, len(snapshot.projects))

    def _quarantine(self) -> Path | None:
        """Rename the corrupt snapshot aside so the next save cannot destroy it."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        target = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        try:
            os.replace(self._path, target)
        except OSError as e:
            logger.error("Could not move corrupt snapshot aside (%s).", e)
            return None
        logger.warning("Corrupt snapshot preserved as %s", target)
        return target
