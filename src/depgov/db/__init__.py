"""Database models and session management."""

from depgov.db.models import Base, Record
from depgov.db.session import init_db, make_session_factory, session_scope

__all__ = [
    "Base",
    "Record",
    "init_db",
    "make_session_factory",
    "session_scope",
]
