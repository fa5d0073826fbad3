"""Tests for the error taxonomy and user-facing formatting."""

from planchat.core.errors import (
    CircuitOpen,
    LoadTimeout,
    NotFound,
    StoreUnavailable,
    SubscriptionError,
    SyncError,
    Unauthorized,
    ValidationError,
    WorkflowTriggerFailed,
    format_error_message,
)


def test_retryable_flags():
    assert StoreUnavailable().retryable is True
    assert LoadTimeout().retryable is True
    assert CircuitOpen().retryable is True
    assert SubscriptionError().retryable is True
    assert NotFound().retryable is False
    assert ValidationError("x").retryable is False
    assert Unauthorized().retryable is False
    assert WorkflowTriggerFailed().retryable is False


def test_load_timeout_is_store_unavailable():
    assert isinstance(LoadTimeout(), StoreUnavailable)
    assert isinstance(CircuitOpen(), StoreUnavailable)


def test_format_error_message_uses_user_message():
    assert format_error_message(NotFound("session 1 missing")) == NotFound.default_user_message
    assert format_error_message(ValidationError("Message cannot be empty")) == (
        "Message cannot be empty"
    )


def test_format_error_message_plain_exceptions():
    assert format_error_message(Exception("Failed to fetch")) == (
        StoreUnavailable.default_user_message
    )
    assert format_error_message(Exception("auth token expired")) == (
        Unauthorized.default_user_message
    )
    assert format_error_message(Exception("request timed out")) == (
        WorkflowTriggerFailed.default_user_message
    )
    assert format_error_message(Exception("boom")) == "boom"
    assert format_error_message("already text") == "already text"
    assert format_error_message(42) == SyncError.default_user_message


def test_workflow_trigger_failed_keeps_status():
    err = WorkflowTriggerFailed("HTTP 500", status_code=500)
    assert err.status_code == 500
    assert str(err) == "HTTP 500"
