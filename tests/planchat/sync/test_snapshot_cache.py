"""Tests for the client-local snapshot cache."""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from planchat.schemas.chat import ChatMessage
from planchat.sync.snapshot_cache import SnapshotCache


def _messages(session_id, count):
    start = datetime.now(timezone.utc) - timedelta(minutes=count)
    return [
        ChatMessage(
            id=str(uuid4()),
            session_id=session_id,
            role="user" if i % 2 == 0 else "assistant",
            content=f"message {i}",
            created_at=start + timedelta(minutes=i),
        )
        for i in range(count)
    ]


def test_save_and_load_keeps_recent_persisted_messages(tmp_path):
    cache = SnapshotCache(tmp_path, message_limit=20)
    session_id = uuid4()
    messages = _messages(session_id, 25)
    local = ChatMessage(
        id="thinking-1",
        session_id=session_id,
        role="assistant",
        created_at=datetime.now(timezone.utc),
        status="processing",
    )
    cache.save("nb/1", session_id, messages + [local])

    snapshot = cache.load("nb/1")
    assert snapshot.session_id == session_id
    assert [m.id for m in snapshot.messages] == [m.id for m in messages[-20:]]
    assert all(not m.is_local for m in snapshot.messages)
    assert not list(tmp_path.glob(".tmp-*"))


def test_missing_snapshot_is_none(tmp_path):
    assert SnapshotCache(tmp_path).load("nb") is None


def test_stale_snapshot_is_discarded(tmp_path):
    cache = SnapshotCache(tmp_path, max_age=timedelta(hours=24))
    session_id = uuid4()
    cache.save("nb", session_id, [])
    path = next(tmp_path.glob("*.snapshot.json"))
    data = json.loads(path.read_text())
    data["timestamp"] = (datetime.now(timezone.utc) - timedelta(hours=25)).isoformat()
    path.write_text(json.dumps(data))

    assert cache.load("nb") is None
    assert not path.exists()


def test_corrupt_snapshot_is_ignored(tmp_path, caplog):
    cache = SnapshotCache(tmp_path)
    cache.save("nb", uuid4(), [])
    next(tmp_path.glob("*.snapshot.json")).write_text("{not json")
    assert cache.load("nb") is None
    assert "unreadable" in caplog.text


def test_last_session_pointer_and_clear(tmp_path):
    cache = SnapshotCache(tmp_path)
    session_id = uuid4()
    assert cache.load_last_session("nb") is None
    cache.save_last_session("nb", session_id)
    assert cache.load_last_session("nb") == session_id

    cache.save("nb", session_id, [])
    cache.clear("nb")
    assert cache.load("nb") is None
    assert cache.load_last_session("nb") is None


def test_from_settings(settings):
    cache = SnapshotCache.from_settings(settings)
    assert cache.directory == settings.snapshot_dir
    assert cache.max_age == timedelta(hours=24)
    assert cache.message_limit == 20
