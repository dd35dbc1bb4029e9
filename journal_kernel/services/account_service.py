"""
AccountService -- chart of accounts maintenance.

Responsibility:
    Creates accounts, re-parents them, and toggles their active flag.
    Journal lines may only reference active accounts of the same scope.

Invariants enforced:
    - The parent tree is acyclic (AccountHierarchyCycleError).
    - A parent must belong to the same tenant/company (AccountNotFoundError).
    - account_type is one of the five account classes, matched in any case
      (InvalidAccountTypeError).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from journal_kernel.domain.scope import LedgerScope
from journal_kernel.exceptions import (
    AccountHierarchyCycleError,
    AccountNotFoundError,
    InvalidAccountTypeError,
)
from journal_kernel.logging_config import get_logger
from journal_kernel.models.account import Account, AccountType

logger = get_logger("services.account")


class AccountService:
    def __init__(self, session: Session):
        self._session = session

    def get_account(self, scope: LedgerScope, account_id: UUID) -> Account:
        account = self._session.execute(
            select(Account).where(
                Account.id == account_id,
                Account.tenant_id == scope.tenant_id,
                Account.company_id == scope.company_id,
            )
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def accounts_by_id(self, scope: LedgerScope, account_ids) -> dict[UUID, Account]:
        """Load the given accounts in scope; missing ids are simply absent."""
        ids = set(account_ids)
        if not ids:
            return {}
        rows = self._session.execute(
            select(Account).where(
                Account.id.in_(ids),
                Account.tenant_id == scope.tenant_id,
                Account.company_id == scope.company_id,
            )
        ).scalars()
        return {account.id: account for account in rows}

    def create_account(
        self,
        scope: LedgerScope,
        *,
        actor_id: str,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_id: UUID | None = None,
        is_active: bool = True,
    ) -> Account:
        account_type = parse_account_type(account_type)
        if parent_id is not None:
            self.get_account(scope, parent_id)

        account = Account(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            code=code,
            name=name,
            account_type=account_type.value,
            parent_id=parent_id,
            is_active=is_active,
            created_by=actor_id,
        )
        self._session.add(account)
        self._session.flush()

        logger.info(
            "account_created",
            extra={
                **scope.log_fields(),
                "account_id": str(account.id),
                "code": code,
                "account_type": account_type.value,
            },
        )
        return account

    def set_parent(
        self,
        scope: LedgerScope,
        account_id: UUID,
        parent_id: UUID | None,
        *,
        actor_id: str,
    ) -> Account:
        account = self.get_account(scope, account_id)

        if parent_id is not None:
            # Walk up from the new parent; meeting the account closes a loop.
            node = self.get_account(scope, parent_id)
            seen: set[UUID] = set()
            while node is not None:
                if node.id == account.id:
                    raise AccountHierarchyCycleError(str(account_id), str(parent_id))
                if node.id in seen:
                    break
                seen.add(node.id)
                node = self.get_account(scope, node.parent_id) if node.parent_id else None

        account.parent_id = parent_id
        account.updated_by = actor_id
        self._session.flush()

        logger.info(
            "account_reparented",
            extra={
                **scope.log_fields(),
                "account_id": str(account_id),
                "parent_id": str(parent_id) if parent_id else None,
            },
        )
        return account

    def set_active(
        self,
        scope: LedgerScope,
        account_id: UUID,
        is_active: bool,
        *,
        actor_id: str,
    ) -> Account:
        account = self.get_account(scope, account_id)
        account.is_active = is_active
        account.updated_by = actor_id
        self._session.flush()
        logger.info(
            "account_activation_changed",
            extra={**scope.log_fields(), "account_id": str(account_id), "is_active": is_active},
        )
        return account


def parse_account_type(value: AccountType | str) -> AccountType:
    """Accept an AccountType or its name in any case ("ASSET", "asset")."""
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(str(value).strip().lower())
    except ValueError:
        raise InvalidAccountTypeError(str(value), tuple(t.value for t in AccountType)) from None
