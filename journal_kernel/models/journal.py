"""
Module: journal_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines -- the
    ledger's source of financial truth.
Architecture position: Kernel > Models.  May import from db/base.py and pure
    domain value objects.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - Reference uniqueness per tenant/company (uq_journal_scope_reference).
    - Parent-owns-child: lines are created and deleted with their entry
      (cascade="all, delete-orphan").
    - Immutability: once an entry is POSTED its lines never change, and the
      header may only move to REVERSED or VOIDED (db/immutability.py).
    - Balance: every transition to POSTED is guarded by the balance
      validator in JournalService; ``is_balanced`` here is the read-side
      annotation of the same rule.

Failure modes:
    - IntegrityError on a duplicate reference that slipped past the
      reference generator (concurrent manual references).
    - ImmutabilityViolationError on UPDATE/DELETE of finalized rows.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from journal_kernel.db.base import Base, ScopedBase, UUIDString
from journal_kernel.domain.balance import BalanceCheck, check_balance
from journal_kernel.domain.lifecycle import EntryOrigin, JournalEntryStatus

if TYPE_CHECKING:
    from journal_kernel.models.account import Account
    from journal_kernel.models.approval import JournalEntryApproval
    from journal_kernel.models.entry_type import JournalEntryType


class JournalEntry(ScopedBase):
    """
    Journal entry header -- the atomic unit of double-entry accounting.

    Contract:
        Owned by exactly one tenant/company pair.  Reversal, adjustment and
        void produce new entries linked back through ``reversal_of_id`` or
        ``adjustment_of_id``; the original's lines are never touched.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "reference", name="uq_journal_scope_reference"),
        Index("idx_journal_scope_date", "tenant_id", "company_id", "entry_date"),
        Index("idx_journal_scope_status", "tenant_id", "company_id", "status"),
    )

    # Accounting date
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    memo: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # JE-YYYYMMDD-NNNN, REV-<ref>, ADJ-<ref>, VOID-<ref>, REC-... or caller supplied
    reference: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(20),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    origin: Mapped[EntryOrigin] = mapped_column(
        String(20),
        default=EntryOrigin.MANUAL,
        nullable=False,
    )

    entry_type_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entry_types.id"),
        nullable=True,
    )

    # Set on reversal and void entries: the entry they offset
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on adjustment entries: the entry they adjust
    adjustment_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on entries generated from a recurring template
    template_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entry_templates.id"),
        nullable=True,
    )

    # Linked transaction owned by another subsystem
    source_domain: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_no",
    )

    approvals: Mapped[list["JournalEntryApproval"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalEntryApproval.position",
    )

    entry_type: Mapped["JournalEntryType | None"] = relationship(lazy="selectin")

    reversal_of: Mapped["JournalEntry | None"] = relationship(
        remote_side="JournalEntry.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.reference} status={JournalEntryStatus(self.status).value}>"

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def balance(self) -> BalanceCheck:
        return check_balance(self.lines)

    @property
    def total_debit(self) -> Decimal:
        return self.balance.total_debit

    @property
    def total_credit(self) -> Decimal:
        return self.balance.total_credit

    @property
    def is_balanced(self) -> bool:
        return self.balance.is_balanced


class JournalLine(Base):
    """
    A single debit/credit line within a journal entry.

    Both amount columns always exist and are non-negative; conventionally
    only one of them is non-zero.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("entry_id", "line_no", name="uq_line_entry_line_no"),
        Index("idx_line_account", "account_id"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 1-based position within the entry
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Dimension tags
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")
    account: Mapped["Account"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<JournalLine {self.line_no} Dr {self.debit} Cr {self.credit}>"

    @property
    def dimensions(self) -> dict[str, str]:
        return {
            k: v for k, v in (
                ("department", self.department),
                ("project", self.project),
                ("location", self.location),
            ) if v is not None
        }
