"""
Typed exception hierarchy for the church ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must be able to tell a bad request from a storage outage without
parsing messages.  Every error therefore:
  1. Has its own class (catch by type, not by message)
  2. Has a class-level CODE (machine-readable, API-safe)
  3. Carries structured DATA as attributes (logged by StructuredFormatter)

Example - RIGHT way:
    try:
        posting_service.post_event(donation)
    except RejectedEvent as e:
        show_form_error(e.code, e.reason)      # caller error, do not retry
    except PostingFailed as e:
        retry_later(e.idempotency_key)          # storage error, retry same key

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- RejectedEvent
    |   +-- InvalidAmount
    |   +-- MalformedEvent
    |   +-- UnbalancedTransaction
    |
    +-- AccountError
    |   +-- UnknownAccount
    |   +-- AccountTypeMismatch
    |   +-- DuplicateAccount
    |   +-- AccountInactive
    |
    +-- StorageError
    |   +-- StoreUnavailable
    |   +-- PostingFailed
    |   +-- DuplicateIdempotencyKey
    |
    +-- ReversalError
    |   +-- TransactionNotFound
    |   +-- TransactionAlreadyReversed
    |   +-- ReversalOfReversal
    |
    +-- AuditError
    |   +-- AuditChainBroken
    |
    +-- ImmutabilityViolation

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                         | When Raised
-----------|------------------------------|-----------------------------------
Rejected   | REJECTED_EVENT               | Event failed validation
           | INVALID_AMOUNT               | Zero, negative or over-precise amount
           | MALFORMED_EVENT              | Missing label, empty payroll, ...
           | UNBALANCED_TRANSACTION       | Debits != credits
-----------|------------------------------|-----------------------------------
Account    | UNKNOWN_ACCOUNT              | Name not registered, no auto-create
           | ACCOUNT_TYPE_MISMATCH        | Name registered with another type
           | DUPLICATE_ACCOUNT            | Explicit register of existing name
           | ACCOUNT_INACTIVE             | Posting to a deactivated account
-----------|------------------------------|-----------------------------------
Storage    | STORE_UNAVAILABLE            | Database I/O failure
           | POSTING_FAILED               | Commit failed, rolled back
           | DUPLICATE_IDEMPOTENCY_KEY    | Key already used by a transaction
-----------|------------------------------|-----------------------------------
Reversal   | TRANSACTION_NOT_FOUND        | Unknown transaction id
           | TRANSACTION_ALREADY_REVERSED | Second reversal attempted
           | REVERSAL_OF_REVERSAL         | Target is itself a reversal
-----------|------------------------------|-----------------------------------
Audit      | AUDIT_CHAIN_BROKEN           | Hash chain validation failed
-----------|------------------------------|-----------------------------------
Immutable  | IMMUTABILITY_VIOLATION       | UPDATE/DELETE of a posted row

===============================================================================
PROPAGATION
===============================================================================

- RejectedEvent is never retried; it is raised before anything is written.
- StorageError subclasses are retried by the caller with the same
  idempotency key, never looped internally.
- UnknownAccount reaches PostingService callers as the __cause__ of a
  RejectedEvent.
- Audit failures are logged and reported on the posting result; they never
  become exceptions for an otherwise committed posting.
"""


class LedgerError(Exception):
    """
    Base exception for all church ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Rejected events (caller errors)


class RejectedEvent(LedgerError):
    """A business event failed validation; nothing was written."""

    code: str = "REJECTED_EVENT"

    def __init__(self, reason: str, reference_id: str | None = None):
        self.reason = reason
        self.reference_id = reference_id
        super().__init__(f"Event rejected: {reason}")


class InvalidAmount(RejectedEvent):
    """Amount is zero, negative, non-numeric or finer than the minor unit."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        super().__init__(f"invalid amount {amount!r}: {reason}")


class MalformedEvent(RejectedEvent):
    """Event is structurally incomplete."""

    code: str = "MALFORMED_EVENT"


class UnbalancedTransaction(RejectedEvent):
    """Transaction debits do not equal credits."""

    code: str = "UNBALANCED_TRANSACTION"

    def __init__(self, debits: str, credits: str, reference_id: str | None = None):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"unbalanced transaction: debits={debits}, credits={credits}",
            reference_id=reference_id,
        )


# Account registry


class AccountError(LedgerError):
    """Base exception for account registry errors."""

    code: str = "ACCOUNT_ERROR"


class UnknownAccount(AccountError):
    """No account matches the name and auto-creation is disabled."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown account: {name!r}")


class AccountTypeMismatch(AccountError):
    """Account exists but with a different type than the posting requires."""

    code: str = "ACCOUNT_TYPE_MISMATCH"

    def __init__(self, name: str, expected_type: str, actual_type: str):
        self.name = name
        self.expected_type = expected_type
        self.actual_type = actual_type
        super().__init__(
            f"Account {name!r} is {actual_type}, expected {expected_type}"
        )


class DuplicateAccount(AccountError):
    """An account with this name or code is already registered."""

    code: str = "DUPLICATE_ACCOUNT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Account already registered: {name!r}")


class AccountInactive(AccountError):
    """Account exists but has been deactivated for new postings."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Account is inactive: {name!r}")


# Storage


class StorageError(LedgerError):
    """Base exception for storage and commit failures."""

    code: str = "STORAGE_ERROR"


class StoreUnavailable(StorageError):
    """The underlying database could not be reached or failed mid-write."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Ledger store unavailable during {operation}: {detail}")


class PostingFailed(StorageError):
    """
    The posting could not be committed and was rolled back.

    Neither the business record nor any ledger line is visible.  Retrying
    with the same idempotency key is safe.
    """

    code: str = "POSTING_FAILED"

    def __init__(self, idempotency_key: str, detail: str):
        self.idempotency_key = idempotency_key
        self.detail = detail
        super().__init__(f"Posting failed for {idempotency_key}: {detail}")


class DuplicateIdempotencyKey(StorageError):
    """A transaction with this idempotency key is already committed."""

    code: str = "DUPLICATE_IDEMPOTENCY_KEY"

    def __init__(self, idempotency_key: str, existing_transaction_id: str):
        self.idempotency_key = idempotency_key
        self.existing_transaction_id = existing_transaction_id
        super().__init__(
            f"Idempotency key {idempotency_key!r} already used by "
            f"transaction {existing_transaction_id}"
        )


# Reversal


class ReversalError(LedgerError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"


class TransactionNotFound(ReversalError):
    """No journal transaction has the given id."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Journal transaction not found: {transaction_id}")


class TransactionAlreadyReversed(ReversalError):
    """The transaction already has a reversal."""

    code: str = "TRANSACTION_ALREADY_REVERSED"

    def __init__(self, transaction_id: str, reversal_id: str):
        self.transaction_id = transaction_id
        self.reversal_id = reversal_id
        super().__init__(
            f"Transaction {transaction_id} already reversed by {reversal_id}"
        )


class ReversalOfReversal(ReversalError):
    """Reversal transactions cannot themselves be reversed."""

    code: str = "REVERSAL_OF_REVERSAL"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction {transaction_id} is a reversal and cannot be reversed"
        )


# Audit


class AuditError(LedgerError):
    """Base exception for audit log errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBroken(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability


class ImmutabilityViolation(LedgerError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id}: record is append-only"
        )
