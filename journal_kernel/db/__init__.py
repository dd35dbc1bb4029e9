"""Database layer - engine, base classes and immutability listeners."""

from journal_kernel.db.base import UUID, Base, ScopedBase, TrackedBase, UUIDString
from journal_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "ScopedBase",
    "TrackedBase",
    "UUID",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
]
