"""
Module: journal_kernel.models.account
Responsibility: Chart of accounts rows referenced by journal lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account code is unique per tenant/company (uq_account_scope_code).
    - The parent tree has no cycles (checked by AccountService before
      parent_id is written).
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from journal_kernel.db.base import ScopedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


# Account types whose balance grows on the debit side.
DEBIT_NORMAL_TYPES: frozenset[AccountType] = frozenset({
    AccountType.ASSET,
    AccountType.EXPENSE,
})


class Account(ScopedBase):
    """A single node in a company's chart of accounts."""

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "code", name="uq_account_scope_code"),
        Index("idx_account_scope", "tenant_id", "company_id"),
    )

    # Human-readable account code (e.g. "1000")
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    # Inactive accounts reject new lines
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    parent: Mapped["Account | None"] = relationship(
        remote_side="Account.id",
        foreign_keys=[parent_id],
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return AccountType(self.account_type) in DEBIT_NORMAL_TYPES
