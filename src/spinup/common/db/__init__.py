"""
Database utilities package.
"""
from spinup.common.db.models import Base
from spinup.common.db.connection import get_engine, get_session_factory, get_scoped_session

__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "get_scoped_session",
]
