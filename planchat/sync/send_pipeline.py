"""
Optimistic send of one user turn.

validate -> optimistic entry -> persist -> trigger workflow -> reply placeholder.
The reply itself is completed by the reconciliation listener when the
assistant row is inserted into the store.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Dict, Optional, Set
from uuid import UUID, uuid4

from planchat.adapters.workflow_trigger import WorkflowTrigger
from planchat.config import Settings
from planchat.core.errors import NotFound, SyncError, Unauthorized, WorkflowTriggerFailed
from planchat.core.sanitize import validate_user_input
from planchat.infra.logging_config import get_logger
from planchat.schemas.chat import (
    PLACEHOLDER_ID_PREFIX,
    TEMP_ID_PREFIX,
    ChatMessage,
    MessageCreate,
    Principal,
)
from planchat.schemas.workflow import WorkflowRequest
from planchat.sync import transitions
from planchat.sync.message_log import MessageLog
from planchat.sync.state_store import ChatStateStore

logger = get_logger("send_pipeline")

_TICK = timedelta(microseconds=1)


class SendPipeline:
    def __init__(
        self,
        states: ChatStateStore,
        log: MessageLog,
        settings: Settings,
        principal: Optional[Principal] = None,
        trigger: Optional[WorkflowTrigger] = None,
    ) -> None:
        self._states = states
        self._log = log
        self._settings = settings
        self._principal = principal
        self._trigger = trigger
        self._last_timestamp: Optional[datetime] = None
        self._trigger_tasks: Set[asyncio.Task] = set()
        self._reply_timers: Dict[str, asyncio.TimerHandle] = {}

    def _next_timestamp(self) -> datetime:
        """Strictly increasing, and never earlier than what is already shown."""
        stamp = datetime.now(timezone.utc)
        floor = self._last_timestamp
        messages = self._states.state.messages
        if messages and (floor is None or messages[-1].created_at > floor):
            floor = messages[-1].created_at
        if floor is not None and stamp <= floor:
            stamp = floor + _TICK
        self._last_timestamp = stamp
        return stamp

    async def send(self, content: str) -> ChatMessage:
        """
        Send a user message in the active session.

        Returns the stored row. Raises ValidationError or Unauthorized before
        anything is shown, and re-raises store errors after removing the
        optimistic entry.
        """
        text = validate_user_input(content, self._settings.max_message_length)
        if self._principal is None:
            raise Unauthorized("Sending requires an authenticated user")
        state = self._states.state
        session_id = state.session_id
        if session_id is None:
            raise NotFound("No active session")

        created_at = self._next_timestamp()
        temp_id = f"{TEMP_ID_PREFIX}{uuid4()}"
        optimistic = ChatMessage(
            id=temp_id,
            session_id=session_id,
            role="user",
            content=text,
            metadata={"client_message_id": temp_id},
            created_at=created_at,
            status="sending",
            user_id=self._principal.user_id,
        )
        await self._states.apply(
            partial(transitions.optimistic_added, message=optimistic), session_id
        )

        try:
            row = await self._log.append(
                MessageCreate(
                    session_id=session_id,
                    user_id=self._principal.user_id,
                    role="user",
                    content=text,
                    metadata={"client_message_id": temp_id},
                    created_at=created_at,
                )
            )
        except SyncError as e:
            logger.warning("Failed to persist message in session %s: %s", session_id, e)
            await self._states.apply(
                partial(transitions.send_failed, temp_id=temp_id), session_id
            )
            raise

        await self._states.apply(
            partial(transitions.send_acknowledged, temp_id=temp_id, row=row), session_id
        )
        self._fire_trigger(
            WorkflowRequest(
                session_id=session_id,
                message=text,
                user_id=self._principal.user_id,
                notebook_id=state.notebook_id,
                timestamp=created_at,
            )
        )
        await self._add_placeholder(session_id)
        return row

    def _fire_trigger(self, request: WorkflowRequest) -> None:
        if self._trigger is None or not self._trigger.enabled:
            logger.warning(
                "No workflow configured; no reply will arrive for session %s",
                request.session_id,
            )
            return
        task = asyncio.create_task(self._run_trigger(request))
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_tasks.discard)

    async def _run_trigger(self, request: WorkflowRequest) -> None:
        try:
            result = await self._trigger.fire(request)
        except WorkflowTriggerFailed as e:
            logger.warning(
                "Workflow trigger for session %s failed, message kept: %s",
                request.session_id,
                e,
            )
            return
        logger.debug(
            "Workflow for session %s accepted (%s, %s)",
            request.session_id,
            result.status_code,
            result.payload.kind,
        )

    async def _add_placeholder(self, session_id: UUID) -> None:
        placeholder = ChatMessage(
            id=f"{PLACEHOLDER_ID_PREFIX}{uuid4()}",
            session_id=session_id,
            role="assistant",
            content=self._settings.thinking_placeholder_text,
            created_at=self._next_timestamp(),
            status="processing",
        )
        await self._states.apply(
            partial(transitions.placeholder_added, placeholder=placeholder), session_id
        )

        timeout = self._settings.reply_timeout_seconds
        if timeout > 0:
            loop = asyncio.get_running_loop()
            self._reply_timers[placeholder.id] = loop.call_later(
                timeout, self._reply_timed_out, placeholder.id, session_id
            )

    def _reply_timed_out(self, placeholder_id: str, session_id: UUID) -> None:
        self._reply_timers.pop(placeholder_id, None)
        if self._states.state.find(placeholder_id) is None:
            return
        logger.warning(
            "No reply for session %s within %ss", session_id, self._settings.reply_timeout_seconds
        )
        self._states.dispatch(
            partial(transitions.reply_timed_out, placeholder_id=placeholder_id), session_id
        )

    async def close(self) -> None:
        """Cancel reply timers and in-flight trigger calls."""
        for handle in self._reply_timers.values():
            handle.cancel()
        self._reply_timers.clear()
        tasks = list(self._trigger_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
