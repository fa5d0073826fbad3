"""
In-process change notifications for store tables.

Every committed insert, update and delete is published as a payload
{event_type, table, row, old}. Subscriptions are filtered by session id on
the publishing side, so a subscriber only ever sees rows of its session.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Optional
from uuid import UUID

from planchat.core.errors import SubscriptionError
from planchat.infra.logging_config import get_logger

logger = get_logger("change_feed")

_CLOSED = object()


class _ChannelFailure:
    def __init__(self, error: SubscriptionError) -> None:
        self.error = error


class Subscription:
    """
    Async iterator over change payloads for one (table, session) filter.

    Iteration ends when the subscription is closed and raises
    SubscriptionError when the channel fails.
    """

    def __init__(
        self, feed: "ChangeFeed", table: str, session_id: Optional[UUID]
    ) -> None:
        self._feed = feed
        self.table = table
        self.session_id = session_id
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def matches(self, table: str, row: Optional[dict[str, Any]]) -> bool:
        if table != self.table:
            return False
        if self.session_id is None:
            return True
        if not row:
            return False
        return str(row.get("session_id")) == str(self.session_id)

    def deliver(self, payload: dict[str, Any]) -> None:
        if not self.closed:
            self._queue.put_nowait(payload)

    def fail(self, error: SubscriptionError) -> None:
        if not self.closed:
            self._queue.put_nowait(_ChannelFailure(error))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.remove(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, _ChannelFailure):
            raise item.error
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class ChangeFeed:
    """Fan-out of table change payloads to live subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, table: str, session_id: Optional[UUID] = None) -> Subscription:
        subscription = Subscription(self, table, session_id)
        self._subscriptions[table].add(subscription)
        logger.debug("Subscribed to %s for session %s", table, session_id)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        self._subscriptions[subscription.table].discard(subscription)

    def subscriber_count(self, table: str, session_id: Optional[UUID] = None) -> int:
        return sum(
            1
            for s in self._subscriptions[table]
            if session_id is None or str(s.session_id) == str(session_id)
        )

    def publish(
        self,
        table: str,
        event_type: str,
        row: Optional[dict[str, Any]] = None,
        old: Optional[dict[str, Any]] = None,
    ) -> int:
        """Deliver a change to every matching subscription. Returns the fan-out."""
        payload = {"event_type": event_type, "table": table, "row": row, "old": old}
        delivered = 0
        for subscription in list(self._subscriptions[table]):
            if subscription.matches(table, row or old):
                subscription.deliver(dict(payload))
                delivered += 1
        return delivered

    def fail(
        self, table: str, session_id: Optional[UUID] = None, reason: str = ""
    ) -> None:
        """Signal a channel error to matching subscriptions and drop them."""
        for subscription in list(self._subscriptions[table]):
            if session_id is None or str(subscription.session_id) == str(session_id):
                subscription.fail(
                    SubscriptionError(reason or f"Channel error on {table}")
                )
                self.remove(subscription)
