"""Database module for the Outreach Engine.

Provides:
- SQLAlchemy ORM models for clients, attempts, history and scheduling
- Async session management
- SqlClientStore, the durable ClientStore implementation
"""
from outreach_engine.db.base import (
    Base,
    IdMixin,
    TimestampMixin,
    UTCDateTime,
    generate_uuid,
)
from outreach_engine.db.session import (
    create_db_engine,
    get_db_engine,
    get_session_factory,
    session_factory_for,
    init_db,
    close_db,
    create_test_engine,
    get_test_session_factory,
)
from outreach_engine.db.store import SqlClientStore

__all__ = [
    # Base and mixins
    "Base",
    "IdMixin",
    "TimestampMixin",
    "UTCDateTime",
    "generate_uuid",
    # Session management
    "create_db_engine",
    "get_db_engine",
    "get_session_factory",
    "session_factory_for",
    "init_db",
    "close_db",
    # Store
    "SqlClientStore",
    # Testing
    "create_test_engine",
    "get_test_session_factory",
]
