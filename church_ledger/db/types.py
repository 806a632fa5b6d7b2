"""
Module: church_ledger.db.types
Responsibility: Column types shared by every model.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/, or domain/.

Invariants enforced:
    - Timestamps round-trip as timezone-aware UTC datetimes.  SQLite has no
      timezone storage, so values are normalized to UTC before binding and
      tagged as UTC on read.  Comparisons against bound parameters therefore
      behave identically on SQLite and PostgreSQL.
    - Amounts are integer minor units.  Conversion to Decimal happens in
      domain/values.py, never in SQL.
"""

from datetime import timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp normalized to UTC.

    Contract:
        Naive datetimes are rejected on bind; the ledger never guesses a
        timezone.

    Guarantees:
        - Values are stored in UTC.
        - Values read back carry tzinfo=UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
