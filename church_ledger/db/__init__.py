"""Database layer: declarative base, column types, engine, immutability."""

from church_ledger.db.base import Base, TrackedBase, UUIDString
from church_ledger.db.engine import LedgerDatabase
from church_ledger.db.types import UTCDateTime

__all__ = [
    "Base",
    "LedgerDatabase",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
]
