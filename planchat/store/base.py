"""
Message store contract consumed by the synchronization layer.

The store is the only source of truth. It enforces ownership itself; callers
pass the principal's user id where a row is created or a listing is scoped.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from planchat.schemas.chat import (
    ChatMessage,
    ChatSessionCreate,
    ChatSessionRead,
    MessageCreate,
    MessageUpdate,
)
from planchat.store.change_feed import Subscription

MESSAGES_TABLE = "chat_messages"
SESSIONS_TABLE = "chat_sessions"


class MessageStore(ABC):
    @abstractmethod
    async def list_sessions(
        self, notebook_id: str, user_id: Optional[UUID] = None
    ) -> List[ChatSessionRead]:
        """Sessions of a notebook, most recently updated first."""
        ...

    @abstractmethod
    async def get_session(
        self, session_id: UUID, user_id: Optional[UUID] = None
    ) -> Optional[ChatSessionRead]:
        ...

    @abstractmethod
    async def create_session(self, data: ChatSessionCreate) -> ChatSessionRead:
        ...

    @abstractmethod
    async def insert_message(self, data: MessageCreate) -> ChatMessage:
        """Persist a message. Raise NotFound if the session does not exist."""
        ...

    @abstractmethod
    async def select_messages(
        self, session_id: UUID, limit: Optional[int] = None
    ) -> List[ChatMessage]:
        """Messages of a session, oldest first."""
        ...

    @abstractmethod
    async def update_message(
        self, message_id: UUID, data: MessageUpdate
    ) -> Optional[ChatMessage]:
        ...

    @abstractmethod
    async def delete_message(self, message_id: UUID) -> bool:
        ...

    @abstractmethod
    async def subscribe(
        self, table: str, session_id: Optional[UUID] = None
    ) -> Subscription:
        """Open a change subscription. Raise SubscriptionError if it cannot."""
        ...
