"""Shared fixtures: a throwaway SQLite database per test and test settings."""

import pytest

import planchat.models  # noqa: F401  (registers tables on Base.metadata)
from planchat.config import Settings
from planchat.db import Base, build_engine, build_session_factory

pytest_plugins = [
    "fixtures.chat_fixtures",
    "fixtures.sync_fixtures",
]


@pytest.fixture(scope="function")
def settings(tmp_path):
    """Settings pointing at a temp database and snapshot dir, with no waiting."""
    return Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'planchat.db'}",
        snapshot_dir=tmp_path / "snapshots",
        workflow_webhook_url="http://workflow.test/webhook/chat",
        store_retry_delay_seconds=0,
        subscription_retry_delay_seconds=0,
        health_check_interval_seconds=0,
        reply_timeout_seconds=0,
        load_timeout_seconds=5,
    )


@pytest.fixture(scope="function")
def engine(settings):
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
