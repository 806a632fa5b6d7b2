"""
AccountRegistry -- the chart of accounts and name resolution.

Responsibility:
    Resolves the account names produced by the journal builder to registered
    accounts, registers accounts explicitly or from the configured chart,
    and (only when the posting policy opts in) creates accounts on first use.

Architecture position:
    Kernel > Services.  Session-bound; flushes, never commits.

Invariants enforced:
    - Every account a ledger line references exists before the line is
      written.  By default an unknown name fails closed with UnknownAccount.
    - Name matching ignores case and repeated whitespace.
    - A name resolves only to an account of the declared type
      (AccountTypeMismatch otherwise).
    - Auto-vivified accounts are flagged ``auto_created``, logged at WARNING
      and listed in ``created`` so the posting service can audit them.

Failure modes:
    - UnknownAccount, AccountTypeMismatch, AccountInactive, DuplicateAccount.
    - IntegrityError from a concurrent auto-creation of the same name is
      absorbed with a savepoint and a re-read.
"""

import re
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from church_ledger.domain.clock import Clock
from church_ledger.domain.dtos import AccountView
from church_ledger.domain.values import AccountType, NormalBalance
from church_ledger.exceptions import (
    AccountInactive,
    AccountTypeMismatch,
    DuplicateAccount,
    UnknownAccount,
)
from church_ledger.logging_config import get_logger
from church_ledger.models.account import Account, account_lookup_key
from church_ledger.services.base import BaseService

logger = get_logger("services.account_registry")

SYSTEM_ACTOR = "system"


def to_account_view(account: Account) -> AccountView:
    return AccountView(
        id=account.id,
        code=account.code,
        name=account.name,
        account_type=AccountType(account.account_type),
        normal_balance=NormalBalance(account.normal_balance),
        is_active=account.is_active,
        auto_created=account.auto_created,
    )


class AccountRegistry(BaseService):
    """
    Registry of ledger accounts.

    Contract:
        ``auto_vivify`` mirrors ``posting_policy.auto_vivify_accounts``.  It
        is off unless the configuration turns it on.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_vivify: bool = False,
        actor: str = SYSTEM_ACTOR,
    ):
        super().__init__(session, clock)
        self._auto_vivify = auto_vivify
        self._actor = actor
        self.created: list[AccountView] = []

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find(self, name: str) -> Account | None:
        return self._session.execute(
            select(Account).where(Account.lookup_key == account_lookup_key(name))
        ).scalar_one_or_none()

    def get(self, account_id: UUID) -> Account | None:
        return self._session.get(Account, account_id)

    def get_by_code(self, code: str) -> Account | None:
        return self._session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def list_accounts(self, include_inactive: bool = True) -> list[Account]:
        query = select(Account).order_by(Account.code)
        if not include_inactive:
            query = query.where(Account.is_active.is_(True))
        return list(self._session.execute(query).scalars())

    def resolve(self, name: str, declared_type: AccountType | None = None) -> Account:
        """
        Resolve ``name`` to an active account.

        When auto-vivify is enabled and ``declared_type`` is given, an
        unknown name creates an account of that type.
        """
        account = self.find(name)
        if account is None:
            if self._auto_vivify and declared_type is not None:
                return self._auto_create(name, declared_type)
            raise UnknownAccount(name)

        if declared_type is not None and account.account_type != declared_type.value:
            raise AccountTypeMismatch(name, declared_type.value, account.account_type)
        if not account.is_active:
            raise AccountInactive(name)
        return account

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        account_type: AccountType,
        code: str | None = None,
        actor: str | None = None,
    ) -> Account:
        """Register a new account; fails if the name or code is taken."""
        if self.find(name) is not None:
            raise DuplicateAccount(name)
        if code is not None and self.get_by_code(code) is not None:
            raise DuplicateAccount(code)

        account = self._new_account(name, AccountType(account_type), code, actor)
        self._session.flush()
        logger.info(
            "account_registered",
            extra={
                "account_code": account.code,
                "account_name": account.name,
                "account_type": account.account_type,
            },
        )
        return account

    def load_chart(self, chart: Iterable, actor: str | None = None) -> list[Account]:
        """
        Register every account definition in ``chart`` that is missing.

        Idempotent: definitions already present (by code or name) with the
        same type are left alone.  Items need ``code``, ``name`` and
        ``account_type`` attributes (church_config.schema.AccountDef).
        """
        created: list[Account] = []
        for definition in chart:
            account_type = AccountType(definition.account_type)
            existing = self.get_by_code(definition.code) or self.find(definition.name)
            if existing is not None:
                if existing.account_type != account_type.value:
                    raise AccountTypeMismatch(
                        definition.name, account_type.value, existing.account_type
                    )
                continue
            created.append(
                self._new_account(definition.name, account_type, definition.code, actor)
            )
        self._session.flush()
        if created:
            logger.info(
                "chart_loaded",
                extra={"accounts_created": [a.code for a in created]},
            )
        return created

    def deactivate(self, name: str) -> Account:
        """Stop an account from receiving new postings.  History is kept."""
        account = self.find(name)
        if account is None:
            raise UnknownAccount(name)
        account.is_active = False
        self._session.flush()
        logger.info("account_deactivated", extra={"account_code": account.code})
        return account

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_account(
        self,
        name: str,
        account_type: AccountType,
        code: str | None,
        actor: str | None,
        auto_created: bool = False,
    ) -> Account:
        display_name = " ".join(name.split())
        account = Account(
            code=code or self._unique_code(display_name),
            name=display_name,
            lookup_key=account_lookup_key(name),
            account_type=account_type.value,
            normal_balance=account_type.normal_balance.value,
            is_active=True,
            auto_created=auto_created,
            created_at=self._clock.now(),
            created_by=actor or self._actor,
        )
        self._session.add(account)
        return account

    def _unique_code(self, name: str) -> str:
        base = re.sub(r"[^a-z0-9]+", "-", account_lookup_key(name)).strip("-")[:40]
        base = base or "account"
        candidate, n = base, 1
        while self.get_by_code(candidate) is not None:
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    def _auto_create(self, name: str, declared_type: AccountType) -> Account:
        savepoint = self._session.begin_nested()
        try:
            account = self._new_account(name, declared_type, None, None, auto_created=True)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("account_auto_create_race", extra={"account_name": name})
            existing = self.find(name)
            if existing is None:
                raise
            return self.resolve(name, declared_type)

        view = to_account_view(account)
        self.created.append(view)
        logger.warning(
            "account_auto_created",
            extra={
                "account_code": view.code,
                "account_name": view.name,
                "account_type": view.account_type.value,
            },
        )
        return account
