"""
Facade wiring the synchronization components for one user.

Typical use::

    async with ChatSyncClient(store, settings, principal=principal) as client:
        await client.open_notebook("notebook-1")
        await client.send("What are the setback requirements?")
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from planchat.adapters.workflow_trigger import WorkflowTrigger
from planchat.config import Settings, get_settings
from planchat.core.errors import LoadTimeout, NotFound, StoreUnavailable, SyncError
from planchat.core.retry import RetryPolicy
from planchat.infra.logging_config import LoggingConfig, get_logger
from planchat.schemas.chat import ChatMessage, ChatSessionRead, Principal
from planchat.schemas.sync import ChatState, RecoveryResult
from planchat.store.base import MessageStore
from planchat.sync import transitions
from planchat.sync.health import SessionHealthMonitor
from planchat.sync.message_log import MessageLog
from planchat.sync.reconciliation import ReconciliationListener
from planchat.sync.recovery import RecoveryManager
from planchat.sync.send_pipeline import SendPipeline
from planchat.sync.session_directory import SessionDirectory
from planchat.sync.snapshot_cache import SnapshotCache
from planchat.sync.state_store import ChatStateStore, Observer

logger = get_logger("client")

RetryAction = Callable[[], Awaitable[object]]


class ChatSyncClient:
    def __init__(
        self,
        store: MessageStore,
        settings: Optional[Settings] = None,
        principal: Optional[Principal] = None,
        trigger: Optional[WorkflowTrigger] = None,
        cache: Optional[SnapshotCache] = None,
    ) -> None:
        self.settings = settings or get_settings()
        LoggingConfig(self.settings.log_level)
        self.principal = principal
        self.store = store
        self.states = ChatStateStore()
        self.retry_policy = RetryPolicy.from_settings(self.settings)
        self.cache = cache or SnapshotCache.from_settings(self.settings)
        self.trigger = trigger or WorkflowTrigger.from_settings(self.settings)

        self.message_log = MessageLog(store, self.retry_policy, principal)
        self.listener = ReconciliationListener(
            store, self.states, self.settings, on_reconnect=self._reload
        )
        self.directory = SessionDirectory(
            store, self.states, self.listener, self.cache, self.retry_policy, principal
        )
        self.pipeline = SendPipeline(
            self.states, self.message_log, self.settings, principal, self.trigger
        )
        self.recovery = RecoveryManager(
            store,
            self.directory,
            self.message_log,
            self.cache,
            self.settings,
            self.retry_policy,
            principal,
        )
        self.health = SessionHealthMonitor(
            store,
            self.settings.health_check_interval_seconds,
            self._on_session_lost,
            principal,
        )

        self.notebook_id: Optional[str] = None
        self.last_recovery: Optional[RecoveryResult] = None
        self._recovering = False
        self._retry_action: Optional[RetryAction] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> "ChatSyncClient":
        self.states.start()
        return self

    async def close(self) -> None:
        state = self.state
        if state.session_id is not None and state.notebook_id:
            self.cache.save(state.notebook_id, state.session_id, state.messages)
        await self.health.stop()
        await self.listener.stop()
        await self.pipeline.close()
        await self.states.apply(transitions.session_closed)
        await self.states.stop()
        logger.info("Chat sync client closed")

    async def __aenter__(self) -> "ChatSyncClient":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def state(self) -> ChatState:
        return self.states.state

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call observer with every new ChatState. Returns an unsubscribe."""
        return self.states.add_observer(observer)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def open_notebook(self, notebook_id: str) -> ChatState:
        """
        Activate the notebook's initial session.

        Preference: the last active session, then the most recently updated
        one, then a new session.
        """
        self.notebook_id = notebook_id
        try:
            sessions = await self.directory.list_sessions(notebook_id)
            last = self.cache.load_last_session(notebook_id)
            if last is not None and any(s.id == last for s in sessions):
                session_id = last
            elif sessions:
                session_id = sessions[0].id
            else:
                session_id = (await self.directory.create_session(notebook_id)).id
        except StoreUnavailable as e:
            await self._fail(e, fatal=True, retry=partial(self.open_notebook, notebook_id))
            return self.state

        await self._activate(notebook_id, session_id)
        return self.state

    async def list_sessions(self) -> List[ChatSessionRead]:
        return await self.directory.list_sessions(self._require_notebook())

    async def create_session(self, title: Optional[str] = None) -> ChatSessionRead:
        """Create a session in the open notebook and switch to it."""
        notebook_id = self._require_notebook()
        session = await self.directory.create_session(notebook_id, title)
        await self._activate(notebook_id, session.id)
        return session

    async def switch_session(self, session_id: UUID) -> ChatState:
        await self._activate(self._require_notebook(), session_id)
        return self.state

    async def recover(
        self, known_session_id: Optional[UUID] = None
    ) -> Optional[RecoveryResult]:
        """Run session recovery for the open notebook. None if the store is down."""
        notebook_id = self._require_notebook()
        if known_session_id is None:
            known_session_id = self.state.session_id

        self._recovering = True
        try:
            result = await self.recovery.recover(notebook_id, known_session_id)
            self.last_recovery = result
            if await self._load(notebook_id, result.session_id):
                await self.health.start(result.session_id)
        except StoreUnavailable as e:
            await self._fail(e, fatal=True, retry=partial(self.recover, known_session_id))
            return None
        finally:
            self._recovering = False
        return result

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send(self, content: str) -> ChatMessage:
        """
        Send a user message in the active session.

        Validation and authorization errors propagate untouched. Store errors
        also leave a dismissible banner; a vanished session triggers recovery
        before the error is re-raised.
        """
        try:
            return await self.pipeline.send(content)
        except NotFound:
            if self.state.session_id is not None:
                logger.warning("Active session vanished while sending, recovering")
                await self.recover(self.state.session_id)
            raise
        except StoreUnavailable as e:
            await self._fail(e)
            raise

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    async def retry(self) -> ChatState:
        """Re-run the action behind the current retryable error."""
        action, self._retry_action = self._retry_action, None
        await self.states.apply(transitions.error_dismissed)
        if action is not None:
            await action()
        elif self.state.session_id is not None and self.notebook_id:
            await self._activate(self.notebook_id, self.state.session_id)
        return self.state

    async def dismiss_error(self) -> ChatState:
        await self.states.apply(transitions.error_dismissed)
        return self.state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_notebook(self) -> str:
        if not self.notebook_id:
            raise RuntimeError("No notebook is open; call open_notebook() first")
        return self.notebook_id

    async def _fail(
        self,
        error: SyncError,
        fatal: bool = False,
        retry: Optional[RetryAction] = None,
        session_id: Optional[UUID] = None,
    ) -> None:
        if retry is not None:
            self._retry_action = retry
        await self.states.apply(
            partial(transitions.error_raised, error=transitions.error_info(error, fatal=fatal)),
            session_id,
        )

    async def _activate(self, notebook_id: str, session_id: UUID) -> None:
        await self.health.stop()
        try:
            await self.directory.switch_session(notebook_id, session_id)
        except StoreUnavailable as e:
            await self._fail(e, fatal=True, retry=partial(self._activate, notebook_id, session_id))
            return
        if await self._load(notebook_id, session_id):
            await self.health.start(session_id)

    async def _load(self, notebook_id: str, session_id: UUID) -> bool:
        """Load history into the projection. Returns False on any failure path."""
        retry = partial(self._activate, notebook_id, session_id)
        try:
            messages = await asyncio.wait_for(
                self.message_log.load_history(session_id),
                timeout=self.settings.load_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Loading session %s timed out", session_id)
            self._retry_action = retry
            await self.states.apply(
                partial(
                    transitions.load_timed_out,
                    error=transitions.error_info(LoadTimeout()),
                ),
                session_id,
            )
            return False
        except NotFound as e:
            if self._recovering:
                logger.error("Recovered session %s cannot be loaded", session_id)
                await self._fail(
                    e, fatal=True, retry=partial(self.recover, None), session_id=session_id
                )
                return False
            await self.recover(session_id)
            return False
        except StoreUnavailable as e:
            await self._fail(e, retry=retry, session_id=session_id)
            return False

        applied = await self.states.apply(
            partial(transitions.history_loaded, messages=messages), session_id
        )
        if applied:
            self.cache.save(notebook_id, session_id, self.state.messages)
        return applied

    async def _reload(self, session_id: UUID) -> None:
        if self.notebook_id and self.state.session_id == session_id:
            await self._load(self.notebook_id, session_id)

    async def _on_session_lost(self, session_id: UUID) -> None:
        if self.state.session_id != session_id:
            return
        await self.recover(session_id)
