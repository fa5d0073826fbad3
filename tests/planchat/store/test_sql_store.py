"""Tests for SqlMessageStore."""

import asyncio
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import exc as sa_exc

from planchat.core.errors import NotFound, StoreUnavailable
from planchat.schemas.chat import ChatSessionCreate, MessageCreate, MessageUpdate
from planchat.store.base import MESSAGES_TABLE
from planchat.store.sql_store import SqlMessageStore


@pytest.mark.asyncio
async def test_create_and_list_sessions(store, principal, notebook_id):
    first = await store.create_session(
        ChatSessionCreate(notebook_id=notebook_id, user_id=principal.user_id, title="A")
    )
    second = await store.create_session(
        ChatSessionCreate(notebook_id=notebook_id, user_id=principal.user_id, title="B")
    )
    sessions = await store.list_sessions(notebook_id, user_id=principal.user_id)
    assert {s.id for s in sessions} == {first.id, second.id}
    assert sessions[0].created_at.tzinfo is not None
    assert await store.get_session(first.id) == first


@pytest.mark.asyncio
async def test_insert_message_publishes_and_counts(store, setup_session, principal):
    sub = await store.subscribe(MESSAGES_TABLE, setup_session.id)
    row = await store.insert_message(
        MessageCreate(
            session_id=setup_session.id,
            user_id=principal.user_id,
            role="user",
            content="hello",
            metadata={"client_message_id": "temp-1"},
        )
    )
    assert row.status == "completed"
    assert row.client_message_id == "temp-1"

    payload = await asyncio.wait_for(sub.__anext__(), timeout=1)
    assert payload["event_type"] == "insert"
    assert payload["row"]["id"] == row.id
    assert payload["row"]["metadata"] == {"client_message_id": "temp-1"}

    session = await store.get_session(setup_session.id)
    assert session.total_messages == 1
    assert session.last_message_at == row.created_at
    sub.close()


@pytest.mark.asyncio
async def test_insert_into_missing_session_raises_not_found(store):
    with pytest.raises(NotFound):
        await store.insert_message(MessageCreate(session_id=uuid4(), role="user", content="x"))


@pytest.mark.asyncio
async def test_select_update_delete(store, setup_session, setup_messages):
    messages = await store.select_messages(setup_session.id)
    assert [m.id for m in messages] == [str(r.id) for r in setup_messages]

    sub = await store.subscribe(MESSAGES_TABLE, setup_session.id)
    updated = await store.update_message(setup_messages[0].id, MessageUpdate(content="edited"))
    assert updated.content == "edited"
    assert await store.delete_message(setup_messages[1].id) is True
    assert await store.delete_message(setup_messages[1].id) is False
    assert await store.update_message(uuid4(), MessageUpdate(content="x")) is None

    first = await asyncio.wait_for(sub.__anext__(), timeout=1)
    second = await asyncio.wait_for(sub.__anext__(), timeout=1)
    assert first["event_type"] == "update"
    assert second["event_type"] == "delete"
    assert second["old"]["id"] == str(setup_messages[1].id)
    sub.close()


@pytest.mark.asyncio
async def test_connectivity_errors_become_store_unavailable(session_factory):
    store = SqlMessageStore(session_factory)
    error = sa_exc.OperationalError("SELECT 1", {}, Exception("database is locked"))
    with patch.object(SqlMessageStore, "_call", side_effect=error):
        with pytest.raises(StoreUnavailable):
            await store.select_messages(uuid4())
