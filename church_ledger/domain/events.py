"""
Business events consumed by the posting service.

Responsibility:
    Immutable descriptions of what happened in the church's business
    modules (a donation received, a bill recorded, a payroll run).  The
    ledger derives its postings from these; it never owns or edits the
    business modules' own records.

Architecture position:
    Kernel > Domain.  Pure data, no I/O.

Conventions:
    - ``amount`` accepts Decimal, int or str; it is validated by the journal
      builder, not at construction, so a bad amount surfaces as
      InvalidAmount from ``build_drafts``/``post_event``.
    - ``record_id`` identifies the business record.  It is generated when
      omitted and doubles as the ledger ``reference_id``.
    - ``idempotency_key`` defaults to ``"<kind>:<record_id>"``.  Callers that
      retry after a timeout must reuse the same event (or the same key).
    - ``fund`` is an optional restricted-fund tag copied onto every ledger
      line for fund-level reporting.  For donations it is also the income
      account label.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from church_ledger.utils.idempotency import generate_idempotency_key

Amount = Decimal | int | str


@dataclass(frozen=True, kw_only=True)
class BusinessEvent:
    """Fields shared by every business event."""

    kind: ClassVar[str] = "business_event"

    actor: str
    occurred_at: datetime | None = None
    record_id: UUID = field(default_factory=uuid4)
    idempotency_key: str | None = None
    description: str | None = None

    @property
    def reference_id(self) -> str:
        return str(self.record_id)

    @property
    def effective_idempotency_key(self) -> str:
        return self.idempotency_key or generate_idempotency_key(self.kind, self.record_id)

    @property
    def label(self) -> str | None:
        """Fund or category label stored on the business record."""
        return None

    def details(self) -> dict[str, Any]:
        """Event-specific fields persisted as JSON on the business record."""
        return {}


@dataclass(frozen=True, kw_only=True)
class Donation(BusinessEvent):
    """Donation received into a fund (tithes, building fund, missions...)."""

    kind: ClassVar[str] = "donation"

    amount: Amount
    fund: str
    donor: str | None = None
    payment_method: str | None = None

    @property
    def label(self) -> str:
        return self.fund

    def details(self) -> dict[str, Any]:
        return {"donor": self.donor, "payment_method": self.payment_method}


@dataclass(frozen=True, kw_only=True)
class Expense(BusinessEvent):
    """Expense paid immediately in cash."""

    kind: ClassVar[str] = "expense"

    amount: Amount
    category: str
    payee: str | None = None
    fund: str | None = None

    @property
    def label(self) -> str:
        return self.category

    def details(self) -> dict[str, Any]:
        return {"payee": self.payee}


@dataclass(frozen=True, kw_only=True)
class Bill(BusinessEvent):
    """Bill recorded as incurred and unpaid."""

    kind: ClassVar[str] = "bill"

    amount: Amount
    category: str
    vendor: str | None = None
    due_date: str | None = None
    fund: str | None = None

    @property
    def label(self) -> str:
        return self.category

    def details(self) -> dict[str, Any]:
        return {"vendor": self.vendor, "due_date": self.due_date}


@dataclass(frozen=True, kw_only=True)
class BillPayment(BusinessEvent):
    """Payment of a previously recorded bill."""

    kind: ClassVar[str] = "bill_payment"

    amount: Amount
    bill_id: UUID | None = None
    vendor: str | None = None
    fund: str | None = None

    @property
    def label(self) -> str | None:
        return self.vendor

    def details(self) -> dict[str, Any]:
        return {
            "bill_id": str(self.bill_id) if self.bill_id else None,
            "vendor": self.vendor,
        }


@dataclass(frozen=True, kw_only=True)
class Invoice(BusinessEvent):
    """Invoice issued for services (hall hire, events...)."""

    kind: ClassVar[str] = "invoice"

    amount: Amount
    customer: str | None = None
    fund: str | None = None

    @property
    def label(self) -> str | None:
        return self.customer

    def details(self) -> dict[str, Any]:
        return {"customer": self.customer}


@dataclass(frozen=True, kw_only=True)
class InvoiceCollection(BusinessEvent):
    """Cash collected against an issued invoice."""

    kind: ClassVar[str] = "invoice_collection"

    amount: Amount
    invoice_id: UUID | None = None
    customer: str | None = None
    fund: str | None = None

    @property
    def label(self) -> str | None:
        return self.customer

    def details(self) -> dict[str, Any]:
        return {
            "invoice_id": str(self.invoice_id) if self.invoice_id else None,
            "customer": self.customer,
        }


@dataclass(frozen=True)
class PayrollLine:
    """One employee's pay within a payroll run."""

    employee: str
    amount: Amount


@dataclass(frozen=True, kw_only=True)
class PayrollRun(BusinessEvent):
    """A payroll run paying several employees in one transaction."""

    kind: ClassVar[str] = "payroll_run"

    lines: tuple[PayrollLine, ...]
    period: str | None = None
    fund: str | None = None

    @property
    def label(self) -> str | None:
        return self.period

    def details(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "lines": [
                {"employee": line.employee, "amount": str(line.amount)}
                for line in self.lines
            ],
        }
