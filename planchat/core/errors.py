"""
Error taxonomy for the synchronization layer.

ValidationError and Unauthorized are raised synchronously and block the
action. NotFound hands control to session recovery. StoreUnavailable and
SubscriptionError are retryable. WorkflowTriggerFailed is only ever logged.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SyncError(Exception):
    kind = "unknown"
    retryable = False
    severity = ErrorSeverity.MEDIUM
    default_user_message = "An unexpected error occurred. Please try again."

    def __init__(self, message: str = "", user_message: Optional[str] = None) -> None:
        super().__init__(message or self.default_user_message)
        self.user_message = user_message or self.default_user_message


class ValidationError(SyncError):
    kind = "validation"
    severity = ErrorSeverity.LOW
    default_user_message = "Please check your message and try again."

    def __init__(
        self,
        message: str = "",
        user_message: Optional[str] = None,
        sanitized: str = "",
    ) -> None:
        super().__init__(message, user_message or message or None)
        self.sanitized = sanitized


class Unauthorized(SyncError):
    kind = "unauthorized"
    severity = ErrorSeverity.HIGH
    default_user_message = (
        "Authentication error. Please refresh the page and sign in again."
    )


class NotFound(SyncError):
    kind = "not_found"
    default_user_message = "This chat session no longer exists."


class StoreUnavailable(SyncError):
    kind = "store_unavailable"
    retryable = True
    default_user_message = (
        "Connection error. Please check your internet connection and try again."
    )


class LoadTimeout(StoreUnavailable):
    kind = "load_timeout"
    default_user_message = "Loading took too long. Please try again."


class CircuitOpen(StoreUnavailable):
    kind = "circuit_open"
    severity = ErrorSeverity.HIGH
    default_user_message = (
        "The chat service is temporarily unavailable. Please try again shortly."
    )


class WorkflowTriggerFailed(SyncError):
    kind = "workflow_trigger_failed"
    severity = ErrorSeverity.LOW
    default_user_message = (
        "Request timed out. The AI service may be busy, please try again."
    )

    def __init__(
        self,
        message: str = "",
        user_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, user_message)
        self.status_code = status_code


class SubscriptionError(SyncError):
    kind = "subscription"
    retryable = True
    default_user_message = "Live updates were interrupted. Reconnecting..."


def format_error_message(error: object) -> str:
    """Map any error to text suitable for a toast or banner."""
    if isinstance(error, str):
        return error
    if isinstance(error, SyncError):
        return error.user_message
    if isinstance(error, Exception):
        text = str(error)
        lowered = text.lower()
        if "connect" in lowered or "fetch" in lowered:
            return StoreUnavailable.default_user_message
        if "auth" in lowered:
            return Unauthorized.default_user_message
        if "timeout" in lowered or "timed out" in lowered:
            return WorkflowTriggerFailed.default_user_message
        return text or SyncError.default_user_message
    return SyncError.default_user_message
