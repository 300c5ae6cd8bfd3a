"""Database layer: declarative base, engine and session management."""

from inspex_kernel.db.base import Base, TrackedBase, UUIDString
from inspex_kernel.db.engine import (
    create_session_factory,
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    make_engine,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "make_engine",
    "reset_engine",
    "session_scope",
]
