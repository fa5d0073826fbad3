"""Pydantic schemas for chat sessions and messages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

MessageRole = Literal["user", "assistant", "system"]
MessageStatus = Literal["sending", "processing", "completed", "error"]

TEMP_ID_PREFIX = "temp-"
PLACEHOLDER_ID_PREFIX = "thinking-"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Principal(BaseModel):
    """The authenticated user every store call is scoped to."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    email: Optional[str] = None


class Citation(BaseModel):
    id: str
    title: str
    excerpt: str
    page_number: Optional[int] = None
    source_id: Optional[str] = None
    confidence: Optional[float] = None


# -----------------------------------------------------------------------------
# Session schemas
# -----------------------------------------------------------------------------


class ChatSessionCreate(BaseModel):
    """Schema for creating a session. Counters always start at zero."""

    notebook_id: str
    user_id: UUID
    title: str = "New Chat"


class ChatSessionRead(BaseModel):
    """Session as returned by the message store."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    notebook_id: str
    user_id: UUID
    title: str
    is_active: bool = True
    total_messages: int = 0
    last_message_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    normalize_timestamps = field_validator(
        "last_message_at", "created_at", "updated_at", mode="after"
    )(as_utc)


# -----------------------------------------------------------------------------
# Message schemas
# -----------------------------------------------------------------------------


class MessageCreate(BaseModel):
    """Row submitted to the store. created_at is optional; the store stamps it."""

    session_id: UUID
    user_id: Optional[UUID] = None
    role: MessageRole
    content: str
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class MessageUpdate(BaseModel):
    content: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class ChatMessage(BaseModel):
    """
    One entry of the client-side message projection.

    Persisted rows carry their store id; optimistic entries and reply
    placeholders carry a local id (temp-... / thinking-...).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: UUID
    role: MessageRole
    content: str = ""
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    status: MessageStatus = "completed"
    user_id: Optional[UUID] = None

    normalize_timestamps = field_validator("created_at", mode="after")(as_utc)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        return value

    @property
    def is_local(self) -> bool:
        return self.id.startswith((TEMP_ID_PREFIX, PLACEHOLDER_ID_PREFIX))

    @property
    def is_placeholder(self) -> bool:
        """Locally synthesized reply indicator (processing, or error after a timeout)."""
        return self.role == "assistant" and self.id.startswith(PLACEHOLDER_ID_PREFIX)

    @property
    def client_message_id(self) -> Optional[str]:
        return (self.metadata or {}).get("client_message_id")

    @classmethod
    def from_record(cls, obj: Any, status: MessageStatus = "completed") -> "ChatMessage":
        """Build from an ORM ChatMessageRecord (DB column 'metadata' is .extra)."""
        return cls(
            id=str(obj.id),
            session_id=obj.session_id,
            role=obj.role,
            content=obj.content or "",
            metadata=getattr(obj, "message_metadata", None),
            created_at=obj.created_at,
            status=status,
            user_id=getattr(obj, "user_id", None),
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ChatMessage":
        """Build from a store row dict; authoritative rows are always completed."""
        data = dict(row)
        data["status"] = "completed"
        return cls.model_validate(data)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"status"})

