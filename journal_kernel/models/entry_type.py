"""
Module: journal_kernel.models.entry_type
Responsibility: Persisted entry types (policy objects) and their allowed
    account sets.
Architecture position: Kernel > Models.  Converts to the pure
    EntryTypeRules snapshot that domain/entry_type_policy.py evaluates.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from journal_kernel.db.base import Base, ScopedBase, UUIDString
from journal_kernel.domain.entry_type_policy import EntryTypeRules


class JournalEntryType(ScopedBase):
    """A class of journal entries with account and amount restrictions."""

    __tablename__ = "journal_entry_types"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "name", name="uq_entry_type_scope_name"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Free-form grouping (e.g. "ADJUSTING", "ACCRUAL", "CLOSING")
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Upper bound for sum(debit + credit); None = unlimited
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    allowed_accounts: Mapped[list["JournalEntryTypeAccount"]] = relationship(
        back_populates="entry_type",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<JournalEntryType {self.name}>"

    @property
    def allowed_account_ids(self) -> frozenset[UUID]:
        return frozenset(link.account_id for link in self.allowed_accounts)

    def to_rules(self) -> EntryTypeRules:
        return EntryTypeRules(
            name=self.name,
            requires_approval=self.requires_approval,
            max_amount=self.max_amount,
            allowed_account_ids=self.allowed_account_ids,
        )


class JournalEntryTypeAccount(Base):
    """Membership of an account in an entry type's allowed set."""

    __tablename__ = "journal_entry_type_accounts"

    __table_args__ = (
        UniqueConstraint("entry_type_id", "account_id", name="uq_entry_type_account"),
    )

    entry_type_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entry_types.id", ondelete="CASCADE"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    entry_type: Mapped["JournalEntryType"] = relationship(back_populates="allowed_accounts")
