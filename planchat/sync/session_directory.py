"""Listing, creating and switching the sessions of a notebook."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from typing import List, Optional
from uuid import UUID

from planchat.core.errors import Unauthorized
from planchat.core.retry import RetryPolicy
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import ChatSessionCreate, ChatSessionRead, Principal
from planchat.store.base import MessageStore
from planchat.sync import transitions
from planchat.sync.reconciliation import ReconciliationListener
from planchat.sync.snapshot_cache import SnapshotCache
from planchat.sync.state_store import ChatStateStore

logger = get_logger("session_directory")

TITLE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def default_title(prefix: str = "Chat") -> str:
    return f"{prefix} - {datetime.now(timezone.utc).strftime(TITLE_TIME_FORMAT)}"


class SessionDirectory:
    def __init__(
        self,
        store: MessageStore,
        states: ChatStateStore,
        listener: ReconciliationListener,
        cache: SnapshotCache,
        retry: Optional[RetryPolicy] = None,
        principal: Optional[Principal] = None,
    ) -> None:
        self._store = store
        self._states = states
        self._listener = listener
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._principal = principal

    async def list_sessions(self, notebook_id: str) -> List[ChatSessionRead]:
        """Sessions of the notebook, most recently updated first."""
        user_id = self._principal.user_id if self._principal else None
        sessions = await self._retry.run(
            "list_sessions",
            lambda: self._store.list_sessions(notebook_id, user_id=user_id),
        )
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    async def create_session(
        self, notebook_id: str, title: Optional[str] = None
    ) -> ChatSessionRead:
        if self._principal is None:
            raise Unauthorized("Creating a session requires an authenticated user")

        data = ChatSessionCreate(
            notebook_id=notebook_id,
            user_id=self._principal.user_id,
            title=title or default_title(),
        )
        session = await self._retry.run(
            "create_session", lambda: self._store.create_session(data)
        )
        logger.info("Created session %s (%s) for notebook %s", session.id, session.title, notebook_id)
        return session

    async def switch_session(self, notebook_id: str, session_id: UUID) -> None:
        """
        Make session_id the active session.

        The outgoing session is snapshotted and its subscription closed before
        the projection is cleared, so nothing from it can land in the new one.
        """
        current = self._states.state
        if current.session_id is not None and current.notebook_id:
            self._cache.save(current.notebook_id, current.session_id, current.messages)

        await self._listener.stop()
        await self._states.apply(
            partial(
                transitions.select_session,
                notebook_id=notebook_id,
                session_id=session_id,
            )
        )
        self._cache.save_last_session(notebook_id, session_id)
        await self._listener.start(session_id)
        logger.info("Switched notebook %s to session %s", notebook_id, session_id)
