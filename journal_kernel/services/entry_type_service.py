"""
EntryTypeService -- entry type (policy object) maintenance and lookup.
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from journal_kernel.domain.dtos import to_decimal
from journal_kernel.domain.scope import LedgerScope
from journal_kernel.exceptions import AccountNotFoundError, InvalidEntryTypeError
from journal_kernel.logging_config import get_logger
from journal_kernel.models.account import Account
from journal_kernel.models.entry_type import JournalEntryType, JournalEntryTypeAccount

logger = get_logger("services.entry_type")


class EntryTypeService:
    def __init__(self, session: Session):
        self._session = session

    def create_entry_type(
        self,
        scope: LedgerScope,
        *,
        actor_id: str,
        name: str,
        description: str | None = None,
        category: str | None = None,
        requires_approval: bool = False,
        max_amount: Decimal | str | None = None,
        allowed_account_ids: Iterable[UUID] = (),
    ) -> JournalEntryType:
        allowed = list(dict.fromkeys(allowed_account_ids))
        if allowed:
            found = set(self._session.execute(
                select(Account.id).where(
                    Account.id.in_(allowed),
                    Account.tenant_id == scope.tenant_id,
                    Account.company_id == scope.company_id,
                )
            ).scalars())
            for account_id in allowed:
                if account_id not in found:
                    raise AccountNotFoundError(str(account_id))

        entry_type = JournalEntryType(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            name=name,
            description=description,
            category=category,
            requires_approval=requires_approval,
            max_amount=to_decimal(max_amount) if max_amount is not None else None,
            created_by=actor_id,
            allowed_accounts=[JournalEntryTypeAccount(account_id=a) for a in allowed],
        )
        self._session.add(entry_type)
        self._session.flush()

        logger.info(
            "entry_type_created",
            extra={
                **scope.log_fields(),
                "entry_type_id": str(entry_type.id),
                "entry_type": name,
                "requires_approval": requires_approval,
                "allowed_accounts": len(allowed),
            },
        )
        return entry_type

    def list_entry_types(
        self,
        scope: LedgerScope,
        include_inactive: bool = False,
    ) -> list[JournalEntryType]:
        query = select(JournalEntryType).where(
            JournalEntryType.tenant_id == scope.tenant_id,
            JournalEntryType.company_id == scope.company_id,
        )
        if not include_inactive:
            query = query.where(JournalEntryType.is_active.is_(True))
        return list(self._session.execute(query.order_by(JournalEntryType.name)).scalars())

    def get_active(self, scope: LedgerScope, entry_type_id: UUID) -> JournalEntryType:
        """Load an entry type that may be used for new entries."""
        entry_type = self._session.execute(
            select(JournalEntryType).where(
                JournalEntryType.id == entry_type_id,
                JournalEntryType.tenant_id == scope.tenant_id,
                JournalEntryType.company_id == scope.company_id,
            )
        ).scalar_one_or_none()
        if entry_type is None:
            raise InvalidEntryTypeError(str(entry_type_id))
        if not entry_type.is_active:
            raise InvalidEntryTypeError(str(entry_type_id), reason="inactive")
        return entry_type

    def deactivate(self, scope: LedgerScope, entry_type_id: UUID, *, actor_id: str) -> JournalEntryType:
        entry_type = self.get_active(scope, entry_type_id)
        entry_type.is_active = False
        entry_type.updated_by = actor_id
        self._session.flush()
        logger.info(
            "entry_type_deactivated",
            extra={**scope.log_fields(), "entry_type_id": str(entry_type_id)},
        )
        return entry_type
