"""
Idempotency key helpers.

Idempotency keys make a retried posting land exactly once: the key is stored
on the journal transaction under a UNIQUE constraint, and postings carrying
the same key are serialized inside the process by ``KeyedLocks``.
"""

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID


def generate_idempotency_key(kind: str, record_id: UUID | str) -> str:
    """
    Derive an idempotency key from a business record.

    Format: kind:record_id

    Example:
        >>> generate_idempotency_key("donation", uuid)
        "donation:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{kind}:{record_id}"


def reversal_idempotency_key(transaction_id: UUID | str) -> str:
    """Key for the single reversal a transaction may have."""
    return f"reversal:{transaction_id}"


class KeyedLocks:
    """
    One lock per key, created on demand and dropped when unused.

    Postings with different keys never contend; postings with the same key
    run one at a time.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
