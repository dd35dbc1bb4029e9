"""
Module: journal_kernel.models.approval
Responsibility: Approval records gating the PENDING_APPROVAL -> POSTED
    transition of a journal entry.
Architecture position: Kernel > Models.

Invariants enforced:
    - Status moves only from PENDING (domain/approval.py APPROVAL_TRANSITIONS);
      ApprovalService checks the transition before writing.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from journal_kernel.db.base import ScopedBase, UUIDString
from journal_kernel.domain.approval import ApprovalStatus

if TYPE_CHECKING:
    from journal_kernel.models.journal import JournalEntry


class JournalEntryApproval(ScopedBase):
    """One approver's decision slot on a journal entry."""

    __tablename__ = "journal_entry_approvals"

    __table_args__ = (
        Index("idx_approval_entry", "entry_id"),
        Index("idx_approval_scope_status", "tenant_id", "company_id", "status"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Order within the request fan-out
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)

    # Designated approver; None means any authorised approver may decide
    approver_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[ApprovalStatus] = mapped_column(
        String(20),
        default=ApprovalStatus.PENDING,
        nullable=False,
    )

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="approvals")

    def __repr__(self) -> str:
        return f"<JournalEntryApproval {self.id} status={ApprovalStatus(self.status).value}>"

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING
