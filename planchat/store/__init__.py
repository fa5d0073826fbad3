"""Message store contract and implementations."""

from planchat.store.base import MessageStore
from planchat.store.change_feed import ChangeFeed, Subscription
from planchat.store.sql_store import SqlMessageStore

__all__ = ["ChangeFeed", "MessageStore", "SqlMessageStore", "Subscription"]
