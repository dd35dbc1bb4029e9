"""
AuditTrailRecorder -- append-only lifecycle audit records.

Responsibility:
    Writes one ``JournalEntryAudit`` row per lifecycle transition (create,
    update, approval request/decision, post, reverse, void, adjust) and
    builds the JSON-safe before/after snapshots stored on it.

Architecture position:
    Kernel > Services.  Called by JournalService, ApprovalService and the
    batch layer.  Never commits; the audit row shares the transaction of the
    change it describes, so a rolled-back change leaves no audit row and a
    committed change always has one.

Audit relevance:
    Audit rows are protected by the immutability listeners: no UPDATE, no
    DELETE.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from journal_kernel.domain.clock import Clock, SystemClock
from journal_kernel.domain.lifecycle import JournalEntryStatus
from journal_kernel.domain.scope import LedgerScope, RequestMetadata
from journal_kernel.logging_config import get_logger
from journal_kernel.models.audit import AuditAction, JournalEntryAudit
from journal_kernel.models.journal import JournalEntry

logger = get_logger("services.audit")


def _json_amount(value: Decimal | None) -> str:
    return str(value if value is not None else Decimal("0"))


def snapshot(entry: JournalEntry) -> dict[str, Any]:
    """JSON-safe view of an entry's header, totals and lines."""
    balance = entry.balance
    return {
        "id": str(entry.id),
        "reference": entry.reference,
        "entry_date": entry.entry_date.isoformat() if entry.entry_date else None,
        "memo": entry.memo,
        "status": JournalEntryStatus(entry.status).value,
        "entry_type_id": str(entry.entry_type_id) if entry.entry_type_id else None,
        "source_domain": entry.source_domain,
        "source_id": entry.source_id,
        "total_debit": _json_amount(balance.total_debit),
        "total_credit": _json_amount(balance.total_credit),
        "lines": [
            {
                "line_no": line.line_no,
                "account_id": str(line.account_id),
                "debit": _json_amount(line.debit),
                "credit": _json_amount(line.credit),
                "memo": line.memo,
                **line.dimensions,
            }
            for line in entry.lines
        ],
    }


class AuditTrailRecorder:
    """Appends audit rows inside the caller's transaction."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        *,
        actor_id: str,
        action: AuditAction,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> JournalEntryAudit:
        audit = JournalEntryAudit(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            entry_id=entry_id,
            actor_id=actor_id,
            action=action.value,
            before=before,
            after=after,
            comments=comments,
            occurred_at=self._clock.now(),
            request_metadata=metadata.to_dict() if metadata else None,
        )
        self._session.add(audit)
        self._session.flush()

        logger.debug(
            "audit_recorded",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry_id),
                "action": action.value,
                "actor_id": actor_id,
            },
        )
        return audit
