"""
Module: journal_kernel.models.template
Responsibility: Reusable entry skeletons (line formulas + recurrence metadata).
Architecture position: Kernel > Models.

A template is only ever read when entries are generated from it; the
scheduler writes back nothing but ``next_run_date`` and ``last_run_date``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from journal_kernel.db.base import Base, ScopedBase, UUIDString


class JournalEntryTemplate(ScopedBase):
    """Entry skeleton, optionally recurring."""

    __tablename__ = "journal_entry_templates"

    __table_args__ = (
        Index("idx_template_due", "tenant_id", "company_id", "is_recurring", "next_run_date"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    entry_type_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entry_types.id"),
        nullable=True,
    )

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # DAILY / WEEKLY / MONTHLY / QUARTERLY / YEARLY (anything else runs daily)
    frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)

    next_run_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    last_run_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    lines: Mapped[list["JournalEntryTemplateLine"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalEntryTemplateLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<JournalEntryTemplate {self.name}>"


class JournalEntryTemplateLine(Base):
    """A template line: the account plus debit and credit formulas."""

    __tablename__ = "journal_entry_template_lines"

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entry_templates.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    # Restricted formulas (see domain/formula.py); None evaluates to 0
    debit_formula: Mapped[str | None] = mapped_column(String(200), nullable=True)
    credit_formula: Mapped[str | None] = mapped_column(String(200), nullable=True)

    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    template: Mapped["JournalEntryTemplate"] = relationship(back_populates="lines")
