"""Database layer - engine, base classes and money types."""

from completion_ledger.db.base import UUID, Base, TrackedBase, UUIDString
from completion_ledger.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from completion_ledger.db.types import Money, ShortCode, round_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "ShortCode",
    "round_money",
]
