"""
Live merge of store-side change notifications into the projection.

One subscription per active session. Notifications are handed to the state
store as transitions, so they are applied one at a time in arrival order.
A failing channel is reopened after a delay, a bounded number of times.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from planchat.config import Settings
from planchat.core.errors import StoreUnavailable, SubscriptionError
from planchat.infra.logging_config import get_logger
from planchat.schemas.sync import ChangeEvent
from planchat.store.base import MESSAGES_TABLE, MessageStore
from planchat.store.change_feed import Subscription
from planchat.sync import transitions
from planchat.sync.state_store import ChatStateStore

logger = get_logger("reconciliation")

ReconnectCallback = Callable[[UUID], Awaitable[None]]


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class ReconciliationListener:
    def __init__(
        self,
        store: MessageStore,
        states: ChatStateStore,
        settings: Settings,
        on_reconnect: Optional[ReconnectCallback] = None,
    ) -> None:
        self._store = store
        self._states = states
        self._retry_delay = settings.subscription_retry_delay_seconds
        self._max_retries = settings.subscription_max_retries
        self._on_reconnect = on_reconnect
        self._session_id: Optional[UUID] = None
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self.retries = 0

    @property
    def session_id(self) -> Optional[UUID]:
        return self._session_id

    @property
    def active(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    async def start(self, session_id: UUID) -> bool:
        """Subscribe to the session's message changes. Returns False if deferred."""
        await self.stop()
        self._session_id = session_id
        self.retries = 0
        return await self._open(session_id)

    async def stop(self) -> None:
        """Close the subscription and cancel any pending reattempt."""
        self._session_id = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        await _cancel(self._retry_task)
        await _cancel(self._consumer)
        self._retry_task = None
        self._consumer = None

    async def _open(self, session_id: UUID) -> bool:
        try:
            subscription = await self._store.subscribe(MESSAGES_TABLE, session_id)
        except (SubscriptionError, StoreUnavailable) as e:
            logger.warning("Could not subscribe to session %s: %s", session_id, e)
            self._schedule_resubscribe(session_id, e)
            return False

        if self._session_id != session_id:
            subscription.close()
            return False
        self._subscription = subscription
        self._consumer = asyncio.create_task(self._consume(subscription, session_id))
        logger.info("Listening for changes on session %s", session_id)
        return True

    async def _consume(self, subscription: Subscription, session_id: UUID) -> None:
        try:
            async for payload in subscription:
                await self.handle_notification(payload, session_id)
        except SubscriptionError as e:
            logger.warning("Subscription for session %s failed: %s", session_id, e)
            subscription.close()
            if self._session_id == session_id:
                self._subscription = None
                self._schedule_resubscribe(session_id, e)

    def _schedule_resubscribe(self, session_id: UUID, error: Exception) -> None:
        if self.retries >= self._max_retries:
            logger.error(
                "Giving up on live updates for session %s after %d attempts",
                session_id,
                self.retries,
            )
            failure = SubscriptionError(
                str(error),
                user_message="Live updates are unavailable. Retry to reconnect.",
            )
            self._states.dispatch(
                partial(transitions.error_raised, error=transitions.error_info(failure)),
                session_id,
            )
            return

        self.retries += 1
        logger.info(
            "Resubscribing to session %s in %.1fs (attempt %d/%d)",
            session_id,
            self._retry_delay,
            self.retries,
            self._max_retries,
        )
        self._retry_task = asyncio.create_task(self._resubscribe_later(session_id))

    async def _resubscribe_later(self, session_id: UUID) -> None:
        await asyncio.sleep(self._retry_delay)
        if self._session_id != session_id:
            return
        if not await self._open(session_id):
            return

        self.retries = 0
        if self._on_reconnect is not None:
            try:
                await self._on_reconnect(session_id)
            except Exception:
                logger.exception("Reload after reconnecting to %s failed", session_id)

    async def handle_notification(self, payload: Any, session_id: UUID) -> bool:
        """
        Merge one change payload. Never raises.

        Malformed payloads and rows of another session are logged and dropped.
        Returns True when the resulting transition was applied.
        """
        try:
            event = ChangeEvent.model_validate(payload)
            if event.table != MESSAGES_TABLE:
                logger.debug("Ignoring change on table %s", event.table)
                return False

            if event.event_type == "delete":
                transition = partial(transitions.row_deleted, message_id=event.message_id())
            else:
                message = event.message()
                if message.session_id != session_id:
                    logger.warning(
                        "Dropping %s for session %s on session %s channel",
                        event.event_type,
                        message.session_id,
                        session_id,
                    )
                    return False
                if event.event_type == "insert":
                    transition = partial(transitions.row_inserted, row=message)
                else:
                    transition = partial(transitions.row_updated, row=message)
        except (PydanticValidationError, ValueError, TypeError) as e:
            logger.warning("Dropping malformed notification %r: %s", payload, e)
            return False

        try:
            return await self._states.apply(transition, session_id)
        except Exception:
            logger.exception("Failed to apply notification for session %s", session_id)
            return False
