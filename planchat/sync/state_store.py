"""
Single owner of the client-side ChatState.

Transitions are queued and applied one at a time by a consumer task on the
event loop. A transition queued with a session id is dropped if a different
session is active by the time it is applied, so late results from a previous
session never reach the current projection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from uuid import UUID

from planchat.infra.logging_config import get_logger
from planchat.schemas.sync import ChatState

logger = get_logger("state_store")

Transition = Callable[[ChatState], ChatState]
Observer = Callable[[ChatState], None]


@dataclass
class _Queued:
    transition: Transition
    session_id: Optional[UUID]
    done: asyncio.Future = field(repr=False)


class ChatStateStore:
    def __init__(self, initial: Optional[ChatState] = None) -> None:
        self._state = initial or ChatState()
        self._queue: asyncio.Queue[_Queued] = asyncio.Queue()
        self._observers: List[Observer] = []
        self._consumer: Optional[asyncio.Task] = None

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def add_observer(self, observer: Observer) -> Callable[[], None]:
        """Register a callback run after every applied change. Returns an unsubscribe."""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def start(self) -> None:
        if not self.running:
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    def dispatch(
        self, transition: Transition, session_id: Optional[UUID] = None
    ) -> asyncio.Future:
        """
        Queue a transition.

        The returned future resolves to True once the transition was applied,
        or False if it was dropped by the session guard or failed.
        """
        loop = asyncio.get_running_loop()
        item = _Queued(transition, session_id, loop.create_future())
        self._queue.put_nowait(item)
        self.start()
        return item.done

    async def apply(
        self, transition: Transition, session_id: Optional[UUID] = None
    ) -> bool:
        return await self.dispatch(transition, session_id)

    async def drain(self) -> None:
        """Wait until every queued transition has been applied."""
        if not self._queue.empty():
            self.start()
        await self._queue.join()

    async def stop(self) -> None:
        """Apply what is still queued, then stop the consumer."""
        while not self._queue.empty():
            self._apply(self._queue.get_nowait())
            self._queue.task_done()
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                self._apply(item)
            finally:
                self._queue.task_done()

    def _apply(self, item: _Queued) -> None:
        if item.session_id is not None and item.session_id != self._state.session_id:
            logger.debug(
                "Dropping %s for inactive session %s",
                getattr(item.transition, "__name__", item.transition),
                item.session_id,
            )
            self._resolve(item, False)
            return

        try:
            new_state = item.transition(self._state)
        except Exception:
            logger.exception("State transition %r failed", item.transition)
            self._resolve(item, False)
            return

        changed = new_state is not self._state
        self._state = new_state
        if changed:
            self._notify()
        self._resolve(item, True)

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception:
                logger.exception("State observer %r failed", observer)

    @staticmethod
    def _resolve(item: _Queued, applied: bool) -> None:
        if not item.done.done():
            item.done.set_result(applied)
