"""Periodic check that the active session still exists."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Set
from uuid import UUID

from planchat.core.errors import SyncError
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import Principal
from planchat.store.base import MessageStore

logger = get_logger("health")

SessionLostCallback = Callable[[UUID], Awaitable[None]]


class SessionHealthMonitor:
    def __init__(
        self,
        store: MessageStore,
        interval: float,
        on_session_lost: SessionLostCallback,
        principal: Optional[Principal] = None,
    ) -> None:
        self._store = store
        self.interval = interval
        self._on_session_lost = on_session_lost
        self._principal = principal
        self._task: Optional[asyncio.Task] = None
        self._callbacks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self, session_id: UUID) -> bool:
        """False only when the store says the session is gone."""
        user_id = self._principal.user_id if self._principal else None
        try:
            session = await self._store.get_session(session_id, user_id=user_id)
        except SyncError as e:
            logger.warning("Health check for session %s skipped: %s", session_id, e)
            return True
        return session is not None

    async def start(self, session_id: UUID) -> None:
        await self.stop()
        if self.interval <= 0:
            return
        self._task = asyncio.create_task(self._watch(session_id))

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _watch(self, session_id: UUID) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if await self.check(session_id):
                continue
            logger.warning("Session %s disappeared, starting recovery", session_id)
            # Run outside this task: recovery restarts the monitor.
            callback = asyncio.create_task(self._on_session_lost(session_id))
            self._callbacks.add(callback)
            callback.add_done_callback(self._callbacks.discard)
            return
