"""User input validation for outgoing chat turns."""

from __future__ import annotations

import re
from typing import Any

from planchat.core.errors import ValidationError

MAX_MESSAGE_LENGTH = 4000

# Safety net only; rendering is responsible for escaping.
SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
SCRIPT_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


def strip_script_content(text: str) -> str:
    text = SCRIPT_BLOCK.sub("", text)
    text = SCRIPT_SCHEME.sub("", text)
    return EVENT_HANDLER.sub("", text)


def validate_user_input(content: Any, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Return the trimmed, sanitized message or raise ValidationError.

    Over-long input is refused; the truncated text is kept on the error so
    the caller can offer it back to the user.
    """
    if not isinstance(content, str):
        raise ValidationError("Input must be a string")

    trimmed = content.strip()
    if not trimmed:
        raise ValidationError("Message cannot be empty")

    if len(trimmed) > max_length:
        raise ValidationError(
            f"Message too long (max {max_length} characters)",
            sanitized=trimmed[:max_length],
        )

    sanitized = strip_script_content(trimmed).strip()
    if not sanitized:
        raise ValidationError("Message cannot be empty")
    return sanitized
