"""Tests for RecoveryManager."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from planchat.core.errors import NotFound, StoreUnavailable
from planchat.schemas.chat import ChatMessage
from planchat.services.chat_session_service import ChatSessionService


def _cached_messages(session_id, count=12):
    start = datetime.now(timezone.utc) - timedelta(hours=1)
    messages = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        content = f"turn {i}"
        if i == count - 2:
            role = "system"
        if i == count - 1:
            content = "   "
        messages.append(
            ChatMessage(
                id=str(uuid4()),
                session_id=session_id,
                role=role,
                content=content,
                created_at=start + timedelta(minutes=i),
                metadata={"client_message_id": f"temp-{i}"},
            )
        )
    return messages


@pytest.mark.asyncio
async def test_missing_session_gets_replacement(client, store, notebook_id):
    """loadHistory on an unknown id fails with NotFound; recovery creates a new session."""
    missing = uuid4()
    with pytest.raises(NotFound):
        await client.message_log.load_history(missing)

    result = await client.recovery.recover(notebook_id, missing)

    assert result.recovered is True
    assert result.session_id != missing
    assert client.state.session_id == result.session_id
    session = await store.get_session(result.session_id)
    assert session.title.startswith("Recovered Chat - ")


@pytest.mark.asyncio
async def test_recovery_is_idempotent(client, notebook_id):
    first = await client.recovery.recover(notebook_id)
    second = await client.recovery.recover(notebook_id, first.session_id)
    third = await client.recovery.recover(notebook_id, first.session_id)

    assert first.recovered is False
    assert second.session_id == first.session_id == third.session_id
    assert second.recovered is False


@pytest.mark.asyncio
async def test_valid_snapshot_is_resumed(client, notebook_id, setup_session, setup_messages):
    client.cache.save(notebook_id, setup_session.id, [])

    result = await client.recovery.recover(notebook_id)

    assert result.session_id == setup_session.id
    assert result.recovered is True
    assert result.replayed == 0
    assert client.listener.session_id == setup_session.id


@pytest.mark.asyncio
async def test_known_session_resumes_without_replay(client, notebook_id, setup_session):
    result = await client.recovery.recover(notebook_id, setup_session.id)
    assert result.session_id == setup_session.id
    assert result.recovered is False
    assert client.cache.load_last_session(notebook_id) == setup_session.id


@pytest.mark.asyncio
async def test_replay_into_replacement_session(client, store, notebook_id):
    gone = uuid4()
    cached = _cached_messages(gone)
    client.cache.save(notebook_id, gone, cached)

    result = await client.recovery.recover(notebook_id, gone)

    # last 10 cached, minus the system row and the blank one
    expected = [m for m in cached[-10:] if m.role != "system" and m.content.strip()]
    assert result.recovered is True
    assert result.replayed == len(expected) == 8

    rows = await store.select_messages(result.session_id)
    assert [r.content for r in rows] == [m.content for m in expected]
    for row, original in zip(rows, expected):
        assert row.id != original.id
        assert row.metadata == {"recovered": True, "original_id": original.id}


@pytest.mark.asyncio
async def test_replay_failures_are_skipped(client, notebook_id, monkeypatch):
    gone = uuid4()
    client.cache.save(notebook_id, gone, _cached_messages(gone, count=4))
    append = client.message_log.append
    calls = []

    async def flaky(data):
        calls.append(data)
        if len(calls) == 1:
            raise StoreUnavailable("blip")
        return await append(data)

    monkeypatch.setattr(client.message_log, "append", flaky)

    result = await client.recovery.recover(notebook_id, gone)

    # system and blank rows are never attempted
    assert len(calls) == 2
    assert result.replayed == 1


@pytest.mark.asyncio
async def test_deleted_snapshot_session_is_replaced(client, db, notebook_id, setup_session):
    client.cache.save(notebook_id, setup_session.id, [])
    ChatSessionService(db).delete_session(setup_session.id)

    result = await client.recovery.recover(notebook_id, setup_session.id)

    assert result.session_id != setup_session.id
    assert result.recovered is True
    snapshot = client.cache.load(notebook_id)
    assert snapshot.session_id == result.session_id
