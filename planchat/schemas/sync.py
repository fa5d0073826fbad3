"""Schemas for the client-side projection, change notifications and recovery."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from planchat.core.errors import ErrorSeverity
from planchat.schemas.chat import ChatMessage, as_utc

ChangeEventType = Literal["insert", "update", "delete"]


class ChangeEvent(BaseModel):
    """
    One store-side change notification.

    Accepts both the store's own shape ({event_type, row, old}) and the
    realtime wire shape ({eventType: "INSERT", new, old}).
    """

    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeEventType = Field(alias="eventType")
    table: str = "chat_messages"
    row: Optional[dict[str, Any]] = Field(default=None, alias="new")
    old: Optional[dict[str, Any]] = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _lower_event_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value

    def message(self) -> ChatMessage:
        """Parse the affected row. Raises pydantic.ValidationError if malformed."""
        source = self.row if self.event_type != "delete" else (self.old or self.row)
        if source is None:
            raise ValueError(f"{self.event_type} notification carries no row")
        return ChatMessage.from_row(source)

    def message_id(self) -> str:
        source = self.old if self.event_type == "delete" and self.old else self.row
        if not source or source.get("id") is None:
            raise ValueError(f"{self.event_type} notification carries no row id")
        return str(source["id"])


class SyncErrorInfo(BaseModel):
    """User-visible error held in the projection."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    retryable: bool = False
    dismissible: bool = True
    fatal: bool = False
    severity: ErrorSeverity = ErrorSeverity.MEDIUM


class ChatState(BaseModel):
    """
    Immutable projection of the active session.

    Every change produces a new ChatState through planchat.sync.transitions.
    """

    model_config = ConfigDict(frozen=True)

    notebook_id: Optional[str] = None
    session_id: Optional[UUID] = None
    messages: tuple[ChatMessage, ...] = ()
    is_loading: bool = False
    error: Optional[SyncErrorInfo] = None

    def find(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    @property
    def placeholders(self) -> tuple[ChatMessage, ...]:
        return tuple(m for m in self.messages if m.is_placeholder)

    @property
    def pending(self) -> tuple[ChatMessage, ...]:
        return tuple(m for m in self.messages if m.status == "sending")


class RecoveryResult(BaseModel):
    session_id: UUID
    recovered: bool
    replayed: int = 0


class RecoverySnapshot(BaseModel):
    """Client-local cache entry used by session recovery."""

    session_id: UUID
    notebook_id: str
    messages: list[ChatMessage] = []
    timestamp: datetime

    normalize_timestamp = field_validator("timestamp", mode="after")(as_utc)
