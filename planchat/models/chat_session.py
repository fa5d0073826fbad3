"""ChatSession model: one row per conversation inside a notebook (project)."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import relationship

from planchat.db import Base
from planchat.models.mixins import TimestampMixin


class ChatSession(Base, TimestampMixin):
    """
    Conversation scoped to one notebook and owned by one user.

    total_messages and last_message_at are denormalized counters kept in step
    with chat_messages by the store on every insert.
    """

    __tablename__ = "chat_sessions"

    __table_args__ = (
        Index("ix_chat_sessions_notebook_updated", "notebook_id", "updated_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notebook_id = Column(String(255), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    title = Column(String(512), nullable=False, default="New Chat")
    is_active = Column(Boolean, nullable=False, default=True)
    total_messages = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    messages = relationship(
        "ChatMessageRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessageRecord.created_at",
    )
