"""
Module: church_ledger.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller and never
      call add(), delete(), flush() or commit().
    - Selectors return frozen dataclasses, not ORM rows.
"""

from abc import ABC

from sqlalchemy.orm import Session

from church_ledger.domain.values import DEFAULT_MINOR_UNIT_EXPONENT


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        The caller owns the session and its transaction scope.
    """

    def __init__(self, session: Session, minor_unit_exponent: int = DEFAULT_MINOR_UNIT_EXPONENT):
        self.session = session
        self.minor_unit_exponent = minor_unit_exponent
