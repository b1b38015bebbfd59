"""Database layer - engine and base classes."""

from enrolment_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from enrolment_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
]
