"""
Module: journal_kernel.models.audit
Responsibility: Append-only audit trail of journal entry lifecycle transitions.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
    - Written in the same transaction as the state change they describe.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from journal_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Lifecycle actions recorded in the audit trail."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_GRANTED = "APPROVAL_GRANTED"
    APPROVAL_REJECTED = "APPROVAL_REJECTED"
    POSTED = "POSTED"
    REVERSED = "REVERSED"
    VOIDED = "VOIDED"
    ADJUSTED = "ADJUSTED"


class JournalEntryAudit(Base):
    """One immutable audit record."""

    __tablename__ = "journal_entry_audits"

    __table_args__ = (
        Index("idx_audit_entry", "entry_id"),
        Index("idx_audit_scope_time", "tenant_id", "company_id", "occurred_at"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(30), nullable=False)

    # JSON-safe snapshots of the entry before and after the transition
    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # ip_address / user_agent / correlation_id supplied by the caller
    request_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<JournalEntryAudit {AuditAction(self.action).value} entry={self.entry_id}>"
