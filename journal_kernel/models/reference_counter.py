"""
Module: journal_kernel.models.reference_counter
Responsibility: Locked counter rows backing date-sequenced entry references.

Each row is one (tenant, company, prefix) sequence, e.g. prefix
``JE-20240115``.  ReferenceGenerator locks the row with
``SELECT ... FOR UPDATE`` and increments it; the aggregate-max-plus-one
read is used only to seed a brand-new counter.
"""

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from journal_kernel.db.base import Base


class ReferenceCounter(Base):
    __tablename__ = "reference_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "prefix", name="uq_reference_counter"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # e.g. "JE-20240115"
    prefix: Mapped[str] = mapped_column(String(50), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
