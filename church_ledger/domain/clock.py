"""
Clock -- where the ledger gets "now".

Responsibility:
    Every ``posted_at`` on a journal transaction, every ``occurred_at`` on an
    audit record and every auto-created account timestamp comes from an
    injected Clock.  Services never read the wall clock themselves, so tests
    can pin posting times and exercise ``as_of`` cut-offs exactly.

Architecture position:
    Kernel > Domain.  SystemClock is the only class here that touches the
    system time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH_FOR_TESTS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests and replays.

    Guarantees:
        - Time stands still until ``advance()`` or ``set_time()`` is called,
          so every line posted in between shares one timestamp.
        - A naive start time is rejected; ledger timestamps are always UTC.
    """

    def __init__(self, start: datetime | None = None):
        self._current = self._checked(start or EPOCH_FOR_TESTS)

    @staticmethod
    def _checked(moment: datetime) -> datetime:
        if moment.tzinfo is None:
            raise ValueError(f"clock time must be timezone-aware: {moment!r}")
        return moment.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = self._checked(moment)

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        if seconds < 0:
            raise ValueError("a ledger clock cannot run backwards")
        self._current += timedelta(seconds=seconds)
        return self._current
