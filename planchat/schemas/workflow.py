"""Workflow trigger request and the normalized reply variants."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from planchat.schemas.chat import Citation


class WorkflowRequest(BaseModel):
    """JSON body posted to the workflow engine (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: UUID
    message: str
    user_id: UUID
    notebook_id: Optional[str] = None
    timestamp: datetime

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkflowText(BaseModel):
    kind: Literal["text"] = "text"
    content: str
    citations: list[Citation] = []
    metadata: dict[str, Any] = {}


class WorkflowError(BaseModel):
    kind: Literal["error"] = "error"
    content: str
    metadata: dict[str, Any] = {}


class WorkflowLoading(BaseModel):
    kind: Literal["loading"] = "loading"
    content: str = "AI is thinking..."
    metadata: dict[str, Any] = {}


WorkflowVariant = Annotated[
    Union[WorkflowText, WorkflowError, WorkflowLoading],
    Field(discriminator="kind"),
]


class TriggerResult(BaseModel):
    """Outcome of one webhook call."""

    status_code: int
    payload: WorkflowVariant
