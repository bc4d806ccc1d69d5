"""Database layer - engine, base classes, types, and immutability."""

from ppe_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from ppe_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
