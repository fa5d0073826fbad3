"""ChatMessageRecord model: one persisted turn (user, assistant or system)."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from planchat.db import Base
from planchat.models.mixins import utcnow


class ChatMessageRecord(Base):
    """One row per message. role is 'user', 'assistant' or 'system'."""

    __tablename__ = "chat_messages"

    __table_args__ = (
        Index("ix_chat_messages_session_id_created_at", "session_id", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(Uuid(as_uuid=True), nullable=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False, default="")
    extra = Column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )  # DB column "metadata"; avoid shadowing Base.metadata
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    session = relationship("ChatSession", back_populates="messages")

    @property
    def message_metadata(self) -> dict | None:
        """Expose DB column 'metadata' for Pydantic/serialization."""
        return self.extra
