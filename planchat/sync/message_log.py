"""Ordered read and append access to one session's message log."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from planchat.core.errors import NotFound
from planchat.core.retry import RetryPolicy
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import ChatMessage, MessageCreate, Principal
from planchat.store.base import MessageStore

logger = get_logger("message_log")


class MessageLog:
    def __init__(
        self,
        store: MessageStore,
        retry: Optional[RetryPolicy] = None,
        principal: Optional[Principal] = None,
    ) -> None:
        self._store = store
        self._retry = retry or RetryPolicy()
        self._principal = principal

    async def load_history(self, session_id: UUID) -> List[ChatMessage]:
        """
        Fetch a session's messages, oldest first.

        Safe to call repeatedly. Raises NotFound when the session id does not
        resolve and StoreUnavailable once retries against the store are spent.
        """
        user_id = self._principal.user_id if self._principal else None
        session = await self._retry.run(
            "get_session", lambda: self._store.get_session(session_id, user_id=user_id)
        )
        if session is None:
            raise NotFound(f"Session {session_id} not found")

        messages = await self._retry.run(
            "select_messages", lambda: self._store.select_messages(session_id)
        )
        logger.debug("Loaded %d messages for session %s", len(messages), session_id)
        return sorted(messages, key=lambda m: m.created_at)

    async def append(self, data: MessageCreate) -> ChatMessage:
        """Persist one message and return the stored row."""
        return await self._retry.run(
            "insert_message", lambda: self._store.insert_message(data)
        )
