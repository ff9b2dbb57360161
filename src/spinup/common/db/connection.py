"""
Engine and session plumbing shared by the worker and the CLI.
"""

from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from spinup.common import settings

_engine = None
_session_factory = None
_scoped_session = None


def get_engine():
    """One engine per process, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.DB_URL,
            pool_pre_ping=True,
            # Long-lived workers outlast server-side idle timeouts
            pool_recycle=3600,
        )
    return _engine


def get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine())
    return _session_factory


def get_scoped_session():
    """Thread-local sessions, one per worker thread."""
    global _scoped_session
    if _scoped_session is None:
        _scoped_session = scoped_session(get_session_factory())
    return _scoped_session


@contextmanager
def make_session():
    """
    Yield the thread's session.

    Commits when the block finishes, rolls back and re-raises if it fails,
    and always releases the session afterwards. Handlers that need progress
    to be visible before the block ends commit on their own.
    """
    session = get_scoped_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.remove()
