"""Context manager for short-lived DB sessions outside request scope."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy.orm import Session


@contextmanager
def db_session(session_factory: Callable[[], Session]) -> Iterator[Session]:
    """Yield a session, rolling back on error and always closing it."""
    db = session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
