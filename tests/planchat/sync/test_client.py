"""End-to-end tests for ChatSyncClient on the SQLite store."""

import asyncio
from datetime import datetime, timezone
from functools import partial
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from planchat.core.errors import (
    NotFound,
    StoreUnavailable,
    Unauthorized,
    ValidationError,
    WorkflowTriggerFailed,
)
from planchat.schemas.chat import ChatMessage, ChatSessionCreate, MessageCreate
from planchat.services.chat_session_service import ChatSessionService
from planchat.store.base import MESSAGES_TABLE
from planchat.store.sql_store import SqlMessageStore
from planchat.sync import transitions
from planchat.sync.client import ChatSyncClient


class GatedStore(SqlMessageStore):
    """Holds inserts until their content's gate opens; can slow down or hold history reads."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gates = {}
        self.select_delay = 0.0
        self.select_hold = None
        self.selected = asyncio.Event()

    async def insert_message(self, data):
        gate = self.gates.get(data.content)
        if gate is not None:
            await gate.wait()
        return await super().insert_message(data)

    async def select_messages(self, session_id, limit=None):
        if self.select_delay:
            await asyncio.sleep(self.select_delay)
        rows = await super().select_messages(session_id, limit)
        self.selected.set()
        if self.select_hold is not None:
            await self.select_hold.wait()
        return rows


def _user_contents(state):
    return [m.content for m in state.messages if m.role == "user"]


@pytest.mark.asyncio
async def test_send_then_reply(client, store, notebook_id, trigger, wait_for):
    """Optimistic entry, then ack plus placeholder, then the reply replaces the placeholder."""
    await client.open_notebook(notebook_id)
    session_id = client.state.session_id
    seen = []
    client.subscribe(seen.append)

    row = await client.send("What are the setback requirements?")

    sending = [s for s in seen if any(m.status == "sending" for m in s.messages)]
    assert sending
    assert [(m.role, m.status) for m in sending[0].messages] == [("user", "sending")]

    state = await wait_for(client, lambda s: len(s.messages) == 2)
    assert [(m.id, m.status) for m in state.messages] == [(row.id, "completed"), (state.messages[1].id, "processing")]
    assert state.messages[1].is_placeholder

    for _ in range(100):
        if trigger.fire.await_count:
            break
        await asyncio.sleep(0.01)
    request = trigger.fire.await_args.args[0]
    assert request.session_id == session_id
    assert request.message == "What are the setback requirements?"
    assert request.notebook_id == notebook_id

    await store.insert_message(
        MessageCreate(session_id=session_id, role="assistant", content="Six metres.")
    )
    state = await wait_for(
        client, lambda s: any(m.role == "assistant" and not m.is_placeholder for m in s.messages)
    )
    assert [(m.role, m.status) for m in state.messages] == [
        ("user", "completed"),
        ("assistant", "completed"),
    ]
    assert state.messages[0].id == row.id


@pytest.mark.asyncio
async def test_out_of_order_acks_render_in_submission_order(
    session_factory, settings, principal, trigger, notebook_id, wait_for
):
    store = GatedStore(session_factory)
    store.gates = {"A": asyncio.Event(), "B": asyncio.Event()}
    async with ChatSyncClient(store, settings, principal=principal, trigger=trigger) as client:
        await client.open_notebook(notebook_id)

        send_a = asyncio.create_task(client.send("A"))
        await wait_for(client, lambda s: len(s.pending) == 1)
        send_b = asyncio.create_task(client.send("B"))
        await wait_for(client, lambda s: len(s.pending) == 2)

        store.gates["B"].set()
        await send_b
        store.gates["A"].set()
        await send_a

        state = await wait_for(
            client,
            lambda s: not s.pending and len([m for m in s.messages if m.role == "user"]) == 2,
        )
        assert _user_contents(state) == ["A", "B"]
        rows = await store.select_messages(state.session_id)
        assert [r.content for r in rows] == ["A", "B"]


@pytest.mark.asyncio
async def test_trigger_failure_keeps_message(
    store, settings, principal, trigger, notebook_id, wait_for
):
    trigger.fire.side_effect = WorkflowTriggerFailed("HTTP 500", status_code=500)
    settings = settings.with_updates(reply_timeout_seconds=0.05)
    async with ChatSyncClient(store, settings, principal=principal, trigger=trigger) as client:
        await client.open_notebook(notebook_id)
        row = await client.send("Is a permit needed?")

        state = await wait_for(
            client, lambda s: any(m.is_placeholder and m.status == "error" for m in s.messages)
        )
        user = state.find(row.id)
        assert user.status == "completed"
        assert [r.id for r in await store.select_messages(state.session_id)] == [row.id]
        assert state.messages[-1].content == transitions.REPLY_TIMEOUT_TEXT


@pytest.mark.asyncio
async def test_session_isolation(client, store, notebook_id, wait_for):
    await client.open_notebook(notebook_id)
    session_a = client.state.session_id
    session_b = (await client.create_session("Second")).id
    assert client.state.session_id == session_b
    assert store.feed.subscriber_count(MESSAGES_TABLE, session_a) == 0

    await store.insert_message(MessageCreate(session_id=session_a, role="assistant", content="late"))
    late = ChatMessage(
        id=str(uuid4()),
        session_id=session_a,
        role="assistant",
        content="late result",
        created_at=datetime.now(timezone.utc),
    )
    applied = await client.states.apply(partial(transitions.row_inserted, row=late), session_a)
    await client.states.drain()

    assert applied is False
    assert client.state.session_id == session_b
    assert client.state.messages == ()


@pytest.mark.asyncio
async def test_switch_session_loads_history(client, notebook_id, setup_session, setup_messages):
    await client.open_notebook(notebook_id)
    state = await client.switch_session(setup_session.id)
    assert [m.id for m in state.messages] == [str(r.id) for r in setup_messages]
    assert state.is_loading is False
    assert client.cache.load_last_session(notebook_id) == setup_session.id
    assert client.cache.load(notebook_id).session_id == setup_session.id


@pytest.mark.asyncio
async def test_open_notebook_prefers_last_session(client, store, principal, notebook_id):
    older = await store.create_session(
        ChatSessionCreate(notebook_id=notebook_id, user_id=principal.user_id, title="older")
    )
    newer = await store.create_session(
        ChatSessionCreate(notebook_id=notebook_id, user_id=principal.user_id, title="newer")
    )
    await store.insert_message(MessageCreate(session_id=newer.id, role="user", content="hi"))

    client.cache.save_last_session(notebook_id, older.id)
    await client.open_notebook(notebook_id)
    assert client.state.session_id == older.id

    client.cache.clear(notebook_id)
    await client.open_notebook(notebook_id)
    assert client.state.session_id == newer.id


@pytest.mark.asyncio
async def test_open_empty_notebook_creates_session(client, store, notebook_id):
    await client.open_notebook(notebook_id)
    sessions = await client.list_sessions()
    assert [s.id for s in sessions] == [client.state.session_id]
    assert sessions[0].title.startswith("Chat - ")


@pytest.mark.asyncio
async def test_open_empty_notebook_survives_transient_create_failure(
    client, store, notebook_id, monkeypatch
):
    real_create = store.create_session
    calls = []

    async def create_once_failing(data):
        calls.append(data)
        if len(calls) == 1:
            raise StoreUnavailable("blip")
        return await real_create(data)

    monkeypatch.setattr(store, "create_session", create_once_failing)
    state = await client.open_notebook(notebook_id)

    assert len(calls) == 2
    assert state.error is None
    assert state.session_id is not None
    assert await store.get_session(state.session_id) is not None


@pytest.mark.asyncio
async def test_live_insert_during_history_load_is_kept(
    session_factory, settings, principal, trigger, notebook_id, setup_session, setup_messages, wait_for
):
    """A row published after the history select ran survives the load being applied."""
    store = GatedStore(session_factory)
    store.select_hold = asyncio.Event()
    async with ChatSyncClient(store, settings, principal=principal, trigger=trigger) as client:
        opening = asyncio.create_task(client.open_notebook(notebook_id))
        await asyncio.wait_for(store.selected.wait(), timeout=2.0)

        live = await store.insert_message(
            MessageCreate(session_id=setup_session.id, role="assistant", content="live reply")
        )
        await wait_for(client, lambda s: any(m.id == live.id for m in s.messages))

        store.select_hold.set()
        state = await opening
        assert state.session_id == setup_session.id
        assert state.is_loading is False
        assert [m.id for m in state.messages] == [str(r.id) for r in setup_messages] + [live.id]


@pytest.mark.asyncio
async def test_load_timeout_then_retry(
    session_factory, settings, principal, trigger, notebook_id, setup_session, setup_messages
):
    store = GatedStore(session_factory)
    store.select_delay = 1.0
    settings = settings.with_updates(load_timeout_seconds=0.05)
    async with ChatSyncClient(store, settings, principal=principal, trigger=trigger) as client:
        await client.open_notebook(notebook_id)
        state = client.state
        assert state.is_loading is False
        assert state.error.kind == "load_timeout"
        assert state.error.retryable is True

        store.select_delay = 0.0
        state = await client.retry()
        assert state.error is None
        assert len(state.messages) == len(setup_messages)


@pytest.mark.asyncio
async def test_validation_error_touches_nothing(client, store, notebook_id):
    await client.open_notebook(notebook_id)
    before = client.state
    with pytest.raises(ValidationError):
        await client.send("   ")
    assert client.state == before
    assert await store.select_messages(before.session_id) == []


@pytest.mark.asyncio
async def test_store_failure_on_send_removes_optimistic_entry(client, store, notebook_id, monkeypatch):
    await client.open_notebook(notebook_id)
    monkeypatch.setattr(store, "insert_message", AsyncMock(side_effect=StoreUnavailable("down")))

    with pytest.raises(StoreUnavailable):
        await client.send("hello")

    state = client.state
    assert state.messages == ()
    assert state.error.kind == "store_unavailable"
    assert state.error.dismissible is True
    assert store.insert_message.await_count == client.settings.store_retry_attempts

    assert (await client.dismiss_error()).error is None


@pytest.mark.asyncio
async def test_send_into_deleted_session_recovers(client, db, notebook_id):
    await client.open_notebook(notebook_id)
    lost = client.state.session_id
    ChatSessionService(db).delete_session(lost)

    with pytest.raises(NotFound):
        await client.send("hello")

    assert client.state.session_id != lost
    assert client.last_recovery.recovered is True
    assert client.state.messages == ()
    assert client.state.error is None


@pytest.mark.asyncio
async def test_switch_to_unknown_session_recovers(client, notebook_id):
    await client.open_notebook(notebook_id)
    current = client.state.session_id
    state = await client.switch_session(uuid4())
    assert state.session_id == current
    assert client.last_recovery.session_id == current


@pytest.mark.asyncio
async def test_health_monitor_recovers_lost_session(
    store, settings, principal, trigger, db, notebook_id, wait_for
):
    settings = settings.with_updates(health_check_interval_seconds=0.05)
    async with ChatSyncClient(store, settings, principal=principal, trigger=trigger) as client:
        await client.open_notebook(notebook_id)
        lost = client.state.session_id
        ChatSessionService(db).delete_session(lost)

        state = await wait_for(client, lambda s: client.last_recovery is not None)
        assert state.session_id != lost
        assert client.last_recovery.recovered is True
        assert await store.get_session(state.session_id) is not None


@pytest.mark.asyncio
async def test_create_session_requires_principal(store, settings, notebook_id):
    async with ChatSyncClient(store, settings) as client:
        with pytest.raises(Unauthorized):
            await client.open_notebook(notebook_id)


@pytest.mark.asyncio
async def test_unreachable_store_on_open_is_fatal_and_retryable(
    client, store, notebook_id, monkeypatch
):
    monkeypatch.setattr(store, "list_sessions", AsyncMock(side_effect=StoreUnavailable("down")))
    state = await client.open_notebook(notebook_id)
    assert state.error.fatal is True
    assert state.error.retryable is True

    monkeypatch.undo()
    state = await client.retry()
    assert state.error is None
    assert state.session_id is not None
