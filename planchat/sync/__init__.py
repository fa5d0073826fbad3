"""Client-side session and message synchronization."""

from planchat.sync.client import ChatSyncClient
from planchat.sync.state_store import ChatStateStore

__all__ = ["ChatStateStore", "ChatSyncClient"]
