"""
BaseService -- common constructor for session-bound ledger services.

Responsibility:
    Every service that reads or writes inside a caller's transaction
    receives the caller's ``Session``, an injected ``Clock``, and flushes
    -- never commits.

Invariants enforced:
    Transaction boundaries belong to the caller (PostingService or a
    ``LedgerDatabase.session_scope()`` block).  A service that commits would
    break the atomicity of "business record + journal transaction".
"""

from abc import ABC

from sqlalchemy.orm import Session

from church_ledger.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for session-bound services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; savepoints it opens are its own to close.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    @property
    def session(self) -> Session:
        return self._session
