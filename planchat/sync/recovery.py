"""
Re-establishing a valid session after a missing session or a failed load.

Order of preference: the cached snapshot's session, the caller's known
session, a fresh session. When the snapshot's session is gone, its most
recent messages are replayed into the replacement session.
"""

from __future__ import annotations

from typing import Optional, Sequence
from uuid import UUID

from planchat.config import Settings
from planchat.core.errors import SyncError
from planchat.core.retry import RetryPolicy
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import ChatMessage, MessageCreate, Principal
from planchat.schemas.sync import RecoveryResult
from planchat.store.base import MessageStore
from planchat.sync.message_log import MessageLog
from planchat.sync.session_directory import SessionDirectory, default_title
from planchat.sync.snapshot_cache import SnapshotCache

logger = get_logger("recovery")

RECOVERED_TITLE_PREFIX = "Recovered Chat"


class RecoveryManager:
    def __init__(
        self,
        store: MessageStore,
        directory: SessionDirectory,
        log: MessageLog,
        cache: SnapshotCache,
        settings: Settings,
        retry: Optional[RetryPolicy] = None,
        principal: Optional[Principal] = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._log = log
        self._cache = cache
        self._replay_limit = settings.recovery_replay_limit
        self._retry = retry or RetryPolicy()
        self._principal = principal

    async def _resolves(self, session_id: UUID) -> bool:
        user_id = self._principal.user_id if self._principal else None
        session = await self._retry.run(
            "get_session", lambda: self._store.get_session(session_id, user_id=user_id)
        )
        return session is not None

    async def recover(
        self, notebook_id: str, known_session_id: Optional[UUID] = None
    ) -> RecoveryResult:
        """
        Leave exactly one valid session active for the notebook.

        The session is switched to, and a fresh snapshot of it is cached so
        that an immediate second call resolves to the same session.
        """
        logger.info(
            "Recovering notebook %s (known session %s)", notebook_id, known_session_id
        )
        snapshot = self._cache.load(notebook_id)

        if snapshot is not None and await self._resolves(snapshot.session_id):
            logger.info("Resuming cached session %s", snapshot.session_id)
            result = RecoveryResult(
                session_id=snapshot.session_id,
                recovered=snapshot.session_id != known_session_id,
            )
        elif snapshot is not None:
            logger.warning(
                "Cached session %s no longer exists, starting a replacement",
                snapshot.session_id,
            )
            session = await self._directory.create_session(
                notebook_id, title=default_title(RECOVERED_TITLE_PREFIX)
            )
            replayed = await self._replay(session.id, snapshot.messages)
            result = RecoveryResult(session_id=session.id, recovered=True, replayed=replayed)
        elif known_session_id is not None and await self._resolves(known_session_id):
            result = RecoveryResult(session_id=known_session_id, recovered=False)
        else:
            if known_session_id is not None:
                logger.warning("Session %s no longer exists", known_session_id)
                title = default_title(RECOVERED_TITLE_PREFIX)
            else:
                title = default_title()
            session = await self._directory.create_session(notebook_id, title=title)
            result = RecoveryResult(
                session_id=session.id, recovered=known_session_id is not None
            )

        await self._directory.switch_session(notebook_id, result.session_id)
        messages = await self._retry.run(
            "select_messages", lambda: self._store.select_messages(result.session_id)
        )
        self._cache.save(notebook_id, result.session_id, messages)
        logger.info(
            "Recovery of notebook %s finished: session %s (recovered=%s, replayed=%d)",
            notebook_id,
            result.session_id,
            result.recovered,
            result.replayed,
        )
        return result

    async def _replay(self, session_id: UUID, messages: Sequence[ChatMessage]) -> int:
        """Re-insert the most recent cached messages. Failures are skipped."""
        if not self._replay_limit:
            return 0
        replayed = 0
        for message in list(messages)[-self._replay_limit :]:
            if message.role == "system" or not message.content.strip():
                continue
            metadata = {
                k: v
                for k, v in (message.metadata or {}).items()
                if k != "client_message_id"
            }
            metadata.update({"recovered": True, "original_id": message.id})
            try:
                await self._log.append(
                    MessageCreate(
                        session_id=session_id,
                        user_id=self._principal.user_id if self._principal else None,
                        role=message.role,
                        content=message.content,
                        metadata=metadata,
                        created_at=message.created_at,
                    )
                )
            except SyncError as e:
                logger.warning("Skipping replay of message %s: %s", message.id, e)
                continue
            replayed += 1
        logger.info("Replayed %d messages into session %s", replayed, session_id)
        return replayed
