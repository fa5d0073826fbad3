"""ChatMessageRecord CRUD and ordered history reads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from planchat.models.chat_message import ChatMessageRecord
from planchat.schemas.chat import MessageCreate, MessageUpdate
from planchat.services.chat_session_service import ChatSessionService


class ChatMessageService:
    def __init__(self, db: DBSession) -> None:
        self.db = db
        self._session_svc = ChatSessionService(db)

    def create_message(self, data: MessageCreate) -> Optional[ChatMessageRecord]:
        """
        Insert a message and update the owning session's counters in one commit.

        Returns None when the session does not exist.
        """
        session = self._session_svc.get_session(data.session_id)
        if session is None:
            return None
        dump = data.model_dump(exclude_none=True)
        extra = dump.pop("metadata", None)
        dump.setdefault("created_at", datetime.now(timezone.utc))
        msg = ChatMessageRecord(extra=extra, **dump)
        self.db.add(msg)
        self._session_svc.record_message(session, dump["created_at"])
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def get_message(self, message_id: UUID) -> Optional[ChatMessageRecord]:
        return (
            self.db.query(ChatMessageRecord)
            .filter(ChatMessageRecord.id == message_id)
            .first()
        )

    def get_messages(
        self,
        session_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ChatMessageRecord]:
        query = (
            self.db.query(ChatMessageRecord)
            .filter(ChatMessageRecord.session_id == session_id)
            .order_by(ChatMessageRecord.created_at, ChatMessageRecord.id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def update_message(
        self, message_id: UUID, data: MessageUpdate
    ) -> Optional[ChatMessageRecord]:
        msg = self.get_message(message_id)
        if msg is None:
            return None
        update_data = data.model_dump(exclude_unset=True)
        if "metadata" in update_data:
            msg.extra = update_data.pop("metadata")
        for key, value in update_data.items():
            setattr(msg, key, value)
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def delete_message(self, message_id: UUID) -> bool:
        msg = self.get_message(message_id)
        if msg is None:
            return False
        self.db.delete(msg)
        self.db.commit()
        return True

    def get_message_count(self, session_id: UUID) -> int:
        return (
            self.db.query(ChatMessageRecord)
            .filter(ChatMessageRecord.session_id == session_id)
            .count()
        )
