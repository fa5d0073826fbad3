"""SQLAlchemy-backed message store with an in-process change feed."""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session as DBSession

from planchat.core.errors import NotFound, StoreUnavailable, SyncError
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import (
    ChatMessage,
    ChatSessionCreate,
    ChatSessionRead,
    MessageCreate,
    MessageUpdate,
)
from planchat.services.chat_message_service import ChatMessageService
from planchat.services.chat_session_service import ChatSessionService
from planchat.store.base import MESSAGES_TABLE, SESSIONS_TABLE, MessageStore
from planchat.store.change_feed import ChangeFeed, Subscription
from planchat.utils.db.db_session_helper import db_session

logger = get_logger("sql_store")

T = TypeVar("T")

_CONNECTIVITY_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
    sa_exc.DisconnectionError,
)


class SqlMessageStore(MessageStore):
    """
    Message store over the chat_sessions / chat_messages tables.

    Each operation runs in a worker thread with its own DB session so the
    event loop never blocks on the database. Change notifications are
    published from the loop after the write has committed.
    """

    def __init__(
        self,
        session_factory: Callable[[], DBSession],
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    async def _run(self, fn: Callable[[DBSession], T]) -> T:
        try:
            return await asyncio.to_thread(self._call, fn)
        except _CONNECTIVITY_ERRORS as e:
            logger.warning("Message store unreachable: %s", e)
            raise StoreUnavailable(str(e)) from e
        except sa_exc.SQLAlchemyError as e:
            logger.error("Message store error: %s", e)
            raise SyncError(str(e)) from e

    def _call(self, fn: Callable[[DBSession], T]) -> T:
        with db_session(self._session_factory) as db:
            return fn(db)

    async def list_sessions(
        self, notebook_id: str, user_id: Optional[UUID] = None
    ) -> List[ChatSessionRead]:
        def _list(db: DBSession) -> List[ChatSessionRead]:
            sessions = ChatSessionService(db).get_sessions_for_notebook(
                notebook_id, user_id=user_id
            )
            return [ChatSessionRead.model_validate(s) for s in sessions]

        return await self._run(_list)

    async def get_session(
        self, session_id: UUID, user_id: Optional[UUID] = None
    ) -> Optional[ChatSessionRead]:
        def _get(db: DBSession) -> Optional[ChatSessionRead]:
            session = ChatSessionService(db).get_session(session_id, user_id=user_id)
            return ChatSessionRead.model_validate(session) if session else None

        return await self._run(_get)

    async def create_session(self, data: ChatSessionCreate) -> ChatSessionRead:
        def _create(db: DBSession) -> ChatSessionRead:
            session = ChatSessionService(db).create_session(data)
            return ChatSessionRead.model_validate(session)

        created = await self._run(_create)
        self.feed.publish(SESSIONS_TABLE, "insert", row=created.model_dump(mode="json"))
        return created

    async def insert_message(self, data: MessageCreate) -> ChatMessage:
        def _insert(db: DBSession) -> Optional[ChatMessage]:
            record = ChatMessageService(db).create_message(data)
            return ChatMessage.from_record(record) if record else None

        message = await self._run(_insert)
        if message is None:
            raise NotFound(f"Session {data.session_id} not found")
        self.feed.publish(MESSAGES_TABLE, "insert", row=message.to_row())
        return message

    async def select_messages(
        self, session_id: UUID, limit: Optional[int] = None
    ) -> List[ChatMessage]:
        def _select(db: DBSession) -> List[ChatMessage]:
            records = ChatMessageService(db).get_messages(session_id, limit=limit)
            return [ChatMessage.from_record(r) for r in records]

        return await self._run(_select)

    async def update_message(
        self, message_id: UUID, data: MessageUpdate
    ) -> Optional[ChatMessage]:
        def _update(db: DBSession) -> Optional[ChatMessage]:
            record = ChatMessageService(db).update_message(message_id, data)
            return ChatMessage.from_record(record) if record else None

        message = await self._run(_update)
        if message is not None:
            self.feed.publish(MESSAGES_TABLE, "update", row=message.to_row())
        return message

    async def delete_message(self, message_id: UUID) -> bool:
        def _delete(db: DBSession) -> Optional[ChatMessage]:
            svc = ChatMessageService(db)
            record = svc.get_message(message_id)
            if record is None:
                return None
            message = ChatMessage.from_record(record)
            svc.delete_message(message_id)
            return message

        message = await self._run(_delete)
        if message is None:
            return False
        self.feed.publish(MESSAGES_TABLE, "delete", old=message.to_row())
        return True

    async def subscribe(
        self, table: str, session_id: Optional[UUID] = None
    ) -> Subscription:
        return self.feed.subscribe(table, session_id)
