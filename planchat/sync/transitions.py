"""
Pure ChatState transitions.

Every change to the local projection is one of these functions. Each takes
the current state and returns a new one; none of them mutate or await.
Messages are kept in nondecreasing created_at order with a stable sort, so
entries with equal timestamps keep their arrival order.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence
from uuid import UUID

from planchat.core.errors import ErrorSeverity, SyncError, format_error_message
from planchat.schemas.chat import ChatMessage
from planchat.schemas.sync import ChatState, SyncErrorInfo

REPLY_TIMEOUT_TEXT = "No response received. Please try sending your message again."

# Errors cleared once history loads successfully.
LOAD_ERROR_KINDS = {"load_timeout", "store_unavailable", "circuit_open", "subscription"}


def _ordered(messages: Iterable[ChatMessage]) -> tuple[ChatMessage, ...]:
    return tuple(sorted(messages, key=lambda m: m.created_at))


def _with_messages(state: ChatState, messages: Iterable[ChatMessage]) -> ChatState:
    return state.model_copy(update={"messages": _ordered(messages)})


def error_info(
    exc: BaseException, fatal: bool = False, dismissible: Optional[bool] = None
) -> SyncErrorInfo:
    """Describe an exception for display. Fatal errors are always critical."""
    known = isinstance(exc, SyncError)
    severity = exc.severity if known else ErrorSeverity.MEDIUM
    return SyncErrorInfo(
        kind=exc.kind if known else "unknown",
        message=format_error_message(exc),
        retryable=(known and exc.retryable) or fatal,
        dismissible=(not fatal) if dismissible is None else dismissible,
        fatal=fatal,
        severity=ErrorSeverity.CRITICAL if fatal else severity,
    )


def select_session(
    state: ChatState, notebook_id: Optional[str], session_id: Optional[UUID]
) -> ChatState:
    """Make session_id active with an empty, loading projection."""
    return ChatState(
        notebook_id=notebook_id,
        session_id=session_id,
        messages=(),
        is_loading=session_id is not None,
        error=None,
    )


def history_loaded(state: ChatState, messages: Sequence[ChatMessage]) -> ChatState:
    """
    Merge loaded history into the projection.

    Stored rows already in the view but absent from the history (inserted
    after the select ran) are kept. Local entries survive unless a stored
    row already stands for them: a pending send whose row carries its
    client_message_id, or a reply placeholder older than a stored assistant row.
    """
    loaded = [m.model_copy(update={"status": "completed"}) for m in messages]
    loaded_ids = {m.id for m in loaded}
    live = [
        m for m in state.messages if not m.is_local and m.id not in loaded_ids
    ]
    stored = loaded + live
    superseded = {m.client_message_id for m in stored if m.client_message_id}
    latest_reply = max(
        (m.created_at for m in stored if m.role == "assistant"), default=None
    )

    kept: list[ChatMessage] = []
    for message in state.messages:
        if not message.is_local:
            continue
        if message.id in superseded:
            continue
        if (
            message.is_placeholder
            and latest_reply is not None
            and latest_reply >= message.created_at
        ):
            continue
        kept.append(message)

    error = state.error
    if error is not None and error.kind in LOAD_ERROR_KINDS:
        error = None
    return state.model_copy(
        update={
            "messages": _ordered(stored + kept),
            "is_loading": False,
            "error": error,
        }
    )


def optimistic_added(state: ChatState, message: ChatMessage) -> ChatState:
    return _with_messages(state, state.messages + (message,))


def send_acknowledged(state: ChatState, temp_id: str, row: ChatMessage) -> ChatState:
    """
    Swap the optimistic entry for the stored row.

    If the row already arrived through the realtime channel the optimistic
    entry is simply dropped.
    """
    row = row.model_copy(update={"status": "completed"})
    if state.find(row.id) is not None:
        return send_failed(state, temp_id)
    if state.find(temp_id) is None:
        return _with_messages(state, state.messages + (row,))
    return _with_messages(
        state, (row if m.id == temp_id else m for m in state.messages)
    )


def send_failed(state: ChatState, temp_id: str) -> ChatState:
    if state.find(temp_id) is None:
        return state
    return _with_messages(state, (m for m in state.messages if m.id != temp_id))


def placeholder_added(state: ChatState, placeholder: ChatMessage) -> ChatState:
    return _with_messages(state, state.messages + (placeholder,))


def row_inserted(state: ChatState, row: ChatMessage) -> ChatState:
    """
    Merge an inserted row pushed by the store.

    Idempotent: a row whose id is already present leaves the state unchanged.
    An assistant row clears reply placeholders; a row carrying a
    client_message_id replaces the optimistic entry it was created from.
    """
    if state.find(row.id) is not None:
        return state
    row = row.model_copy(update={"status": "completed"})
    messages: list[ChatMessage] = list(state.messages)
    if row.role == "assistant":
        messages = [m for m in messages if not m.is_placeholder]
    if row.client_message_id:
        messages = [m for m in messages if m.id != row.client_message_id]
    messages.append(row)
    return _with_messages(state, messages)


def row_updated(state: ChatState, row: ChatMessage) -> ChatState:
    """Replace a present row in place. An unknown id is ignored."""
    if state.find(row.id) is None:
        return state
    row = row.model_copy(update={"status": "completed"})
    return _with_messages(state, (row if m.id == row.id else m for m in state.messages))


def row_deleted(state: ChatState, message_id: str) -> ChatState:
    if state.find(message_id) is None:
        return state
    return _with_messages(state, (m for m in state.messages if m.id != message_id))


def reply_timed_out(
    state: ChatState, placeholder_id: str, text: str = REPLY_TIMEOUT_TEXT
) -> ChatState:
    """Turn a still-processing placeholder into a terminal error entry."""
    placeholder = state.find(placeholder_id)
    if placeholder is None or placeholder.status != "processing":
        return state
    failed = placeholder.model_copy(
        update={
            "status": "error",
            "content": text,
            "metadata": {"error": "reply_timeout"},
        }
    )
    return _with_messages(
        state, (failed if m.id == placeholder_id else m for m in state.messages)
    )


def load_timed_out(state: ChatState, error: SyncErrorInfo) -> ChatState:
    """Clear a stuck loading flag and surface a retry affordance."""
    if not state.is_loading:
        return state
    return state.model_copy(update={"is_loading": False, "error": error})


def error_raised(state: ChatState, error: SyncErrorInfo) -> ChatState:
    return state.model_copy(update={"error": error, "is_loading": False})


def error_dismissed(state: ChatState) -> ChatState:
    if state.error is None or not state.error.dismissible:
        return state
    return state.model_copy(update={"error": None})


def session_closed(state: ChatState) -> ChatState:
    return ChatState(notebook_id=state.notebook_id)
