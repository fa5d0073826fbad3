"""
Normalize whatever the workflow engine answers into one reply variant.

The engine may answer with a bare string, an object with one of several text
fields, an error object, a status object or a list of fragments. Nothing past
this module branches on those shapes.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from planchat.schemas.chat import Citation
from planchat.schemas.workflow import (
    WorkflowError,
    WorkflowLoading,
    WorkflowText,
    WorkflowVariant,
)


FALLBACK_MESSAGE = "Message content unavailable"
CITATION_PATTERN = re.compile(r"\[(\d+)\]|\[([^\]]+)\]")
TEXT_FIELDS = ("response", "output", "content", "message")
LOADING_STATUSES = {"processing", "thinking"}


def extract_citations(text: str) -> list[Citation]:
    """Collect [1] / [Source A] style references from reply text."""
    citations: list[Citation] = []
    for match in CITATION_PATTERN.finditer(text or ""):
        citation_id = match.group(1) or match.group(2)
        if citation_id:
            citations.append(
                Citation(
                    id=citation_id,
                    title=f"Citation {citation_id}",
                    excerpt=f"Reference {citation_id} from the document corpus",
                    confidence=0.8,
                )
            )
    return citations


def _text(content: str, metadata: Any = None, citations: Any = None) -> WorkflowText:
    parsed: list[Citation] = []
    if isinstance(citations, list):
        try:
            parsed = [Citation.model_validate(c) for c in citations]
        except ValidationError:
            parsed = []
    return WorkflowText(
        content=content,
        citations=parsed or extract_citations(content),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


def _parse_mapping(obj: dict[str, Any]) -> WorkflowVariant:
    status = obj.get("status")
    if isinstance(status, str) and status.lower() in LOADING_STATUSES:
        message = obj.get("message")
        if isinstance(message, str) and message:
            return WorkflowLoading(content=message, metadata=obj)
        return WorkflowLoading(metadata=obj)

    for field in TEXT_FIELDS:
        value = obj.get(field)
        if isinstance(value, str) and value.strip():
            return _text(value.strip(), obj.get("metadata"), obj.get("citations"))

    if obj.get("error"):
        error = obj["error"]
        detail = error if isinstance(error, str) else "Unknown error occurred"
        return WorkflowError(content=f"Error: {detail}", metadata=obj)

    if obj:
        rendered = json.dumps(obj, indent=2, default=str)
        return WorkflowText(
            content=f"Response data:\n```json\n{rendered}\n```",
            metadata={"is_stringified": True},
        )

    return WorkflowError(
        content="Received empty or invalid response object",
        metadata={"error": "Empty object"},
    )


def _parse_list(items: list[Any]) -> WorkflowVariant:
    fragments: list[str] = []
    for item in items:
        if isinstance(item, str):
            fragments.append(item)
        elif isinstance(item, dict):
            parsed = _parse_mapping(item)
            if isinstance(parsed, WorkflowText) and not parsed.metadata.get(
                "is_stringified"
            ):
                fragments.append(parsed.content)
    text = "\n\n".join(f for f in fragments if f.strip())
    if text.strip():
        return _text(text)
    return WorkflowError(
        content="Received empty or invalid response list",
        metadata={"error": "No text fragments"},
    )


def parse_workflow_payload(
    raw: Any, fallback_message: str = FALLBACK_MESSAGE
) -> WorkflowVariant:
    """Map any decoded response body onto WorkflowText, WorkflowError or WorkflowLoading."""
    if raw is None:
        return WorkflowError(
            content=fallback_message,
            metadata={"error": "Content is null or undefined"},
        )
    if isinstance(raw, str):
        if not raw.strip():
            return WorkflowError(
                content="Empty message received",
                metadata={"error": "Empty string content"},
            )
        return _text(raw.strip())
    if isinstance(raw, bool) or isinstance(raw, (int, float)):
        return WorkflowText(
            content=json.dumps(raw), metadata={"original_type": type(raw).__name__}
        )
    if isinstance(raw, dict):
        return _parse_mapping(raw)
    if isinstance(raw, list):
        return _parse_list(raw)
    return WorkflowError(
        content=fallback_message,
        metadata={
            "error": f"Unsupported content type: {type(raw).__name__}",
            "original_type": type(raw).__name__,
        },
    )
