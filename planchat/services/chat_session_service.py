"""ChatSession CRUD and notebook listing."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import desc
from sqlalchemy.orm import Session as DBSession

from planchat.models.chat_session import ChatSession
from planchat.schemas.chat import ChatSessionCreate


class ChatSessionService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_session(
        self, session_id: UUID, user_id: Optional[UUID] = None
    ) -> Optional[ChatSession]:
        query = self.db.query(ChatSession).filter(ChatSession.id == session_id)
        if user_id is not None:
            query = query.filter(ChatSession.user_id == user_id)
        return query.first()

    def get_sessions_for_notebook(
        self,
        notebook_id: str,
        user_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ChatSession]:
        """Sessions of a notebook, most recently updated first."""
        query = self.db.query(ChatSession).filter(
            ChatSession.notebook_id == notebook_id
        )
        if user_id is not None:
            query = query.filter(ChatSession.user_id == user_id)
        return (
            query.order_by(desc(ChatSession.updated_at), desc(ChatSession.created_at))
            .offset(skip)
            .limit(limit)
            .all()
        )

    def create_session(self, data: ChatSessionCreate) -> ChatSession:
        session = ChatSession(**data.model_dump(), total_messages=0, is_active=True)
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def record_message(self, session: ChatSession, created_at: datetime) -> None:
        """Bump the denormalized counters after a message insert (no commit)."""
        session.total_messages = (session.total_messages or 0) + 1
        session.last_message_at = created_at
        session.updated_at = datetime.now(timezone.utc)

    def delete_session(self, session_id: UUID) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        self.db.delete(session)
        self.db.commit()
        return True
