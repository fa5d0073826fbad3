"""Fire-and-forget client for the workflow engine's chat webhook."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import requests

from planchat.adapters.workflow_payload import parse_workflow_payload
from planchat.config import Settings
from planchat.core.errors import WorkflowTriggerFailed
from planchat.infra.logging_config import get_logger
from planchat.schemas.workflow import TriggerResult, WorkflowRequest

logger = get_logger("workflow_trigger")

TIMEOUT_SECONDS = 30


class WorkflowTrigger:
    """
    Posts chat turns to the workflow engine.

    The reply itself arrives later as an assistant row in the message store;
    the HTTP response is only parsed for logging.
    """

    def __init__(self, url: Optional[str], timeout: float = TIMEOUT_SECONDS) -> None:
        self._url = url
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowTrigger":
        return cls(
            url=settings.workflow_webhook_url,
            timeout=settings.workflow_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    def post(self, request: WorkflowRequest) -> TriggerResult:
        """
        POST the request body and parse the answer.

        Raises:
            WorkflowTriggerFailed: when no URL is configured, the request could
                not be sent, or the engine answered with a non-2xx status.
        """
        if not self._url:
            raise WorkflowTriggerFailed("Workflow webhook URL is not configured")

        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        logger.info(
            "Triggering workflow for session %s (%d chars)",
            request.session_id,
            len(request.message),
        )
        try:
            resp = requests.post(
                self._url,
                json=request.to_payload(),
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.warning("Workflow trigger failed for session %s: %s", request.session_id, e)
            raise WorkflowTriggerFailed(str(e)) from e

        logger.info(
            "Workflow trigger for session %s answered HTTP %s",
            request.session_id,
            resp.status_code,
        )
        if not resp.ok:
            raise WorkflowTriggerFailed(
                f"HTTP {resp.status_code}: {resp.text[:500] if resp.text else 'no body'}",
                status_code=resp.status_code,
            )

        body: Any
        try:
            body = resp.json()
        except ValueError:
            body = resp.text
        return TriggerResult(status_code=resp.status_code, payload=parse_workflow_payload(body))

    async def fire(self, request: WorkflowRequest) -> TriggerResult:
        return await asyncio.to_thread(self.post, request)
