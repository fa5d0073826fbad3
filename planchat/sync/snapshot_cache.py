"""
Client-local recovery cache.

One JSON file per notebook holds the last active session and a bounded window
of its recent messages; a second small file remembers which session was last
active. Entries older than the age ceiling are deleted on read.
"""

from __future__ import annotations

import os
import re
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from planchat.config import Settings
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import ChatMessage
from planchat.schemas.sync import RecoverySnapshot

logger = get_logger("snapshot_cache")

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class SnapshotCache:
    def __init__(
        self,
        directory: Union[str, Path],
        max_age: timedelta = timedelta(hours=24),
        message_limit: int = 20,
    ) -> None:
        self.directory = Path(directory)
        self.max_age = max_age
        self.message_limit = message_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> "SnapshotCache":
        return cls(
            directory=settings.snapshot_dir,
            max_age=timedelta(hours=settings.snapshot_max_age_hours),
            message_limit=settings.snapshot_message_limit,
        )

    def _path(self, notebook_id: str, suffix: str) -> Path:
        return self.directory / f"{_UNSAFE.sub('_', notebook_id)}.{suffix}"

    def _write(self, path: Path, text: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp, path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    def save(
        self,
        notebook_id: str,
        session_id: UUID,
        messages: Iterable[ChatMessage],
    ) -> RecoverySnapshot:
        """Store the session and its most recent persisted messages."""
        persisted = [m for m in messages if not m.is_local]
        if self.message_limit:
            persisted = persisted[-self.message_limit :]
        else:
            persisted = []
        snapshot = RecoverySnapshot(
            session_id=session_id,
            notebook_id=notebook_id,
            messages=persisted,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            self._write(self._path(notebook_id, "snapshot.json"), snapshot.model_dump_json())
        except OSError as e:
            logger.warning("Could not save snapshot for notebook %s: %s", notebook_id, e)
        return snapshot

    def load(self, notebook_id: str) -> Optional[RecoverySnapshot]:
        """Return the notebook's snapshot, or None if absent, stale or unreadable."""
        path = self._path(notebook_id, "snapshot.json")
        if not path.exists():
            return None
        try:
            snapshot = RecoverySnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, e)
            return None

        if snapshot.notebook_id != notebook_id:
            logger.warning(
                "Snapshot %s belongs to notebook %s, ignoring", path, snapshot.notebook_id
            )
            return None
        age = datetime.now(timezone.utc) - snapshot.timestamp
        if age > self.max_age:
            logger.info("Discarding snapshot for notebook %s (age %s)", notebook_id, age)
            path.unlink(missing_ok=True)
            return None
        return snapshot

    def save_last_session(self, notebook_id: str, session_id: UUID) -> None:
        try:
            self._write(self._path(notebook_id, "last_session"), str(session_id))
        except OSError as e:
            logger.warning("Could not remember last session for %s: %s", notebook_id, e)

    def load_last_session(self, notebook_id: str) -> Optional[UUID]:
        path = self._path(notebook_id, "last_session")
        if not path.exists():
            return None
        try:
            return UUID(path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable last-session pointer %s: %s", path, e)
            return None

    def clear(self, notebook_id: str) -> None:
        for suffix in ("snapshot.json", "last_session"):
            self._path(notebook_id, suffix).unlink(missing_ok=True)
