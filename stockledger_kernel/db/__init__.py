"""Database layer - engine, base classes and immutability listeners."""

from stockledger_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from stockledger_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUID",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]
