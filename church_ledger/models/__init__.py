"""ORM models.  Importing this package registers every table on Base.metadata."""

from church_ledger.models.account import Account, account_lookup_key
from church_ledger.models.audit_record import AuditAction, AuditRecord
from church_ledger.models.business_record import BusinessRecord
from church_ledger.models.journal import JournalEntry, JournalTransaction
from church_ledger.services.sequence_service import SequenceCounter

__all__ = [
    "Account",
    "AuditAction",
    "AuditRecord",
    "BusinessRecord",
    "JournalEntry",
    "JournalTransaction",
    "SequenceCounter",
    "account_lookup_key",
]
