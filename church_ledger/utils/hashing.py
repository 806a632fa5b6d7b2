"""
Deterministic hashing utilities.

All hashing in the ledger must be deterministic and reproducible.  The audit
chain and the configuration checksum both depend on these functions.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # 10.50 and 10.5 hash identically; no exponent notation
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    - Keys are sorted alphabetically
    - No whitespace
    - Decimal, datetime, UUID and Enum values are converted consistently
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: dict | None) -> dict:
    """Round-trip through canonical JSON so the value can go in a JSON column."""
    return json.loads(canonicalize_json(data or {}))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_record(
    seq: int,
    occurred_at: datetime,
    actor: str,
    action: str,
    related_transaction_id: str | None,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash of an audit record.

    The position (``seq``), the timestamp and the previous record's hash are
    all part of the input, so moving, re-dating, editing or removing any
    earlier record changes every later hash.  ``occurred_at`` must be
    timezone-aware; it is hashed in UTC.
    """
    if occurred_at.tzinfo is None:
        raise ValueError(f"occurred_at must be timezone-aware: {occurred_at!r}")
    components = [
        str(seq),
        occurred_at.astimezone(timezone.utc).isoformat(),
        actor,
        action,
        related_transaction_id or "-",
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
