"""
Module: church_ledger.models.account
Responsibility: ORM persistence for the chart of accounts, the target of
    every ledger line.
Architecture position: Kernel > Models.  May import from db/ and
    domain/values.py only.

Invariants enforced:
    - code is unique (uq_account_code).
    - lookup_key (casefolded, whitespace-collapsed name) is unique, so
      "cash", "Cash" and " CASH " are the same account.
    - account_type, normal_balance and code are frozen once the account has
      ledger entries (db/immutability.py).

Audit relevance:
    Accounts created implicitly (auto_created=True) are also recorded in the
    audit log as ACCOUNT_AUTO_CREATED.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from church_ledger.db.base import TrackedBase
from church_ledger.domain.values import AccountType, NormalBalance

if TYPE_CHECKING:
    from church_ledger.models.journal import JournalEntry


def account_lookup_key(name: str) -> str:
    """Normalized name used for case- and whitespace-insensitive matching."""
    return " ".join(name.split()).casefold()


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Guarantees:
        - normal_balance is consistent with account_type (debit for assets and
          expenses, credit otherwise); set by AccountRegistry.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        UniqueConstraint("lookup_key", name="uq_account_lookup_key"),
        Index("idx_account_type", "account_type"),
    )

    # Stable identifier (slug or chart code)
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    # Human label as registered
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    lookup_key: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # True when created on first use under the auto-vivify policy
    auto_created: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    entries: Mapped[list["JournalEntry"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

