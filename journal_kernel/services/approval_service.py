"""
ApprovalService -- approval requests and decisions on journal entries.

Responsibility:
    Fans an entry out to one or more approvers, records each decision, and
    posts or returns the entry according to the caller's ApprovalPolicy.

Architecture position:
    Kernel > Services.  Posting goes through JournalService.apply_posting so
    that the balance check and the POSTED audit row are shared with direct
    posting.

Invariants enforced:
    - Only PENDING approvals can be decided (ApprovalAlreadyProcessedError).
    - Decisions are only taken while the entry is PENDING_APPROVAL.
    - A designated approver can only be decided by that approver.
    - When the entry leaves PENDING_APPROVAL every other PENDING approval on
      it becomes CANCELLED, so no open approval ever points at a posted or
      returned entry.

Audit relevance:
    APPROVAL_REQUESTED, APPROVAL_GRANTED, APPROVAL_REJECTED and POSTED rows.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from journal_kernel.domain.approval import ApprovalPolicy, ApprovalStatus, should_post
from journal_kernel.domain.clock import Clock, SystemClock
from journal_kernel.domain.lifecycle import JournalEntryStatus
from journal_kernel.domain.ports import JournalNotification, NotificationKind
from journal_kernel.domain.scope import LedgerScope, RequestMetadata
from journal_kernel.exceptions import (
    ApprovalAlreadyProcessedError,
    ApprovalNotFoundError,
    ApproverMismatchError,
    InvalidStatusError,
    MissingApproversError,
)
from journal_kernel.logging_config import get_logger
from journal_kernel.models.approval import JournalEntryApproval
from journal_kernel.models.audit import AuditAction
from journal_kernel.models.journal import JournalEntry
from journal_kernel.services.journal_service import JournalService

logger = get_logger("services.approval")


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of a single approval decision."""

    approval: JournalEntryApproval
    entry: JournalEntry
    entry_posted: bool


class ApprovalService:
    """
    Approval workflow over JournalService.

    Usage:
        approvals = ApprovalService(session, journal, clock)
        approvals.request_approval(scope, entry.id, ["mgr-1", "mgr-2"], actor_id="u-1")
        outcome = approvals.approve(
            scope, approval_id, actor_id="mgr-1", policy=ApprovalPolicy.ANY_ONE,
        )
    """

    def __init__(self, session: Session, journal: JournalService, clock: Clock | None = None):
        self._session = session
        self._journal = journal
        self._clock = clock or SystemClock()

    def request_approval(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        approver_ids: Sequence[str],
        *,
        actor_id: str,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> list[JournalEntryApproval]:
        """DRAFT -> PENDING_APPROVAL with one approval per distinct approver."""
        entry = self._journal.lock_entry(scope, entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidStatusError(
                str(entry_id), JournalEntryStatus(entry.status).value, "request_approval",
            )

        approvers = list(dict.fromkeys(a for a in approver_ids if a))
        if not approvers:
            raise MissingApproversError(str(entry_id))

        now = self._clock.now()
        created = [
            JournalEntryApproval(
                tenant_id=scope.tenant_id,
                company_id=scope.company_id,
                position=position,
                requested_by=actor_id,
                approver_id=approver_id,
                status=ApprovalStatus.PENDING.value,
                requested_at=now,
                comments=comments if position == 1 else None,
                created_by=actor_id,
            )
            for position, approver_id in enumerate(approvers, start=1)
        ]
        entry.approvals.extend(created)
        entry.status = JournalEntryStatus.PENDING_APPROVAL.value
        entry.updated_by = actor_id
        self._session.flush()

        self._journal.audit.record(
            scope,
            entry.id,
            actor_id=actor_id,
            action=AuditAction.APPROVAL_REQUESTED,
            before={"status": JournalEntryStatus.DRAFT.value},
            after={
                "status": JournalEntryStatus.PENDING_APPROVAL.value,
                "approvers": approvers,
            },
            comments=comments,
            metadata=metadata,
        )
        logger.info(
            "approval_requested",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "reference": entry.reference,
                "approver_count": len(approvers),
                "actor_id": actor_id,
            },
        )
        self._journal.notifications.dispatch(
            JournalNotification(
                kind=NotificationKind.APPROVAL_REQUESTED,
                scope=scope,
                entry_id=entry.id,
                reference=entry.reference,
                actor_id=actor_id,
                recipients=tuple(approvers),
                comments=comments,
            )
        )
        return created

    def approve(
        self,
        scope: LedgerScope,
        approval_id: UUID,
        *,
        actor_id: str,
        policy: ApprovalPolicy,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> ApprovalOutcome:
        """
        Approve one pending approval.

        ANY_ONE posts the entry immediately.  ALL_REQUIRED posts it once no
        sibling approval is still pending.
        """
        policy = ApprovalPolicy(policy)
        approval, entry = self._load_decidable(scope, approval_id, actor_id)

        remaining = [a for a in entry.approvals if a.id != approval.id and a.is_pending]
        posting = should_post(policy, len(remaining))
        if posting:
            # An unbalanced entry must fail before the approval is recorded.
            self._journal.require_balanced(entry.lines, entry_id=entry.id)

        self._decide(approval, ApprovalStatus.APPROVED, actor_id, comments)

        self._journal.audit.record(
            scope,
            entry.id,
            actor_id=actor_id,
            action=AuditAction.APPROVAL_GRANTED,
            after={
                "approval_id": str(approval.id),
                "policy": policy.value,
                "remaining_pending": len(remaining),
            },
            comments=comments,
            metadata=metadata,
        )

        if posting:
            self._journal.apply_posting(
                scope, entry, actor_id=actor_id, comments=comments, metadata=metadata,
            )
            self._cancel(remaining, actor_id)

        self._session.flush()
        logger.info(
            "approval_decided",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "approval_id": str(approval.id),
                "decision": ApprovalStatus.APPROVED.value,
                "policy": policy.value,
                "entry_posted": posting,
                "actor_id": actor_id,
            },
        )
        self._notify_requester(
            scope, entry, approval, NotificationKind.ENTRY_APPROVED, actor_id, comments,
            payload={"entry_posted": posting},
        )
        return ApprovalOutcome(approval=approval, entry=entry, entry_posted=posting)

    def reject(
        self,
        scope: LedgerScope,
        approval_id: UUID,
        *,
        actor_id: str,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> ApprovalOutcome:
        """Reject one approval; the entry returns to DRAFT."""
        approval, entry = self._load_decidable(scope, approval_id, actor_id)

        self._decide(approval, ApprovalStatus.REJECTED, actor_id, comments)
        self._cancel(
            [a for a in entry.approvals if a.id != approval.id and a.is_pending],
            actor_id,
        )
        entry.status = JournalEntryStatus.DRAFT.value
        entry.updated_by = actor_id
        self._session.flush()

        self._journal.audit.record(
            scope,
            entry.id,
            actor_id=actor_id,
            action=AuditAction.APPROVAL_REJECTED,
            before={"status": JournalEntryStatus.PENDING_APPROVAL.value},
            after={
                "status": JournalEntryStatus.DRAFT.value,
                "approval_id": str(approval.id),
            },
            comments=comments,
            metadata=metadata,
        )
        logger.info(
            "approval_decided",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "approval_id": str(approval.id),
                "decision": ApprovalStatus.REJECTED.value,
                "actor_id": actor_id,
            },
        )
        self._notify_requester(
            scope, entry, approval, NotificationKind.ENTRY_REJECTED, actor_id, comments,
        )
        return ApprovalOutcome(approval=approval, entry=entry, entry_posted=False)

    def approve_all_pending(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        *,
        actor_id: str,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> JournalEntry:
        """Approve every open approval on an entry and post it."""
        entry = self._journal.lock_entry(scope, entry_id)
        if entry.status != JournalEntryStatus.PENDING_APPROVAL:
            raise InvalidStatusError(
                str(entry_id), JournalEntryStatus(entry.status).value, "approve",
            )

        # Balance first so a failing entry leaves its approvals untouched.
        self._journal.require_balanced(entry.lines, entry_id=entry.id)

        pending = [a for a in entry.approvals if a.is_pending]
        for approval in pending:
            self._decide(approval, ApprovalStatus.APPROVED, actor_id, comments)
            self._journal.audit.record(
                scope,
                entry.id,
                actor_id=actor_id,
                action=AuditAction.APPROVAL_GRANTED,
                after={"approval_id": str(approval.id)},
                comments=comments,
                metadata=metadata,
            )

        self._journal.apply_posting(
            scope, entry, actor_id=actor_id, comments=comments, metadata=metadata,
        )
        logger.info(
            "entry_approved_in_full",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "approvals_closed": len(pending),
                "actor_id": actor_id,
            },
        )
        return entry

    # -- internals ------------------------------------------------------------

    def _load_decidable(
        self,
        scope: LedgerScope,
        approval_id: UUID,
        actor_id: str,
    ) -> tuple[JournalEntryApproval, JournalEntry]:
        query = select(JournalEntryApproval).where(
            JournalEntryApproval.id == approval_id,
            JournalEntryApproval.tenant_id == scope.tenant_id,
            JournalEntryApproval.company_id == scope.company_id,
        )
        approval = self._session.execute(query).scalar_one_or_none()
        if approval is None:
            raise ApprovalNotFoundError(str(approval_id))

        # Entry row first, then the approval: the same order as approve_all_pending.
        entry = self._journal.lock_entry(scope, approval.entry_id)
        approval = self._session.execute(
            query.with_for_update().execution_options(populate_existing=True)
        ).scalar_one()
        if not approval.is_pending:
            raise ApprovalAlreadyProcessedError(
                str(approval_id), ApprovalStatus(approval.status).value,
            )

        if entry.status != JournalEntryStatus.PENDING_APPROVAL:
            raise InvalidStatusError(
                str(entry.id), JournalEntryStatus(entry.status).value, "approve",
            )
        if approval.approver_id is not None and approval.approver_id != actor_id:
            raise ApproverMismatchError(str(approval_id), approval.approver_id, actor_id)
        return approval, entry

    def _decide(
        self,
        approval: JournalEntryApproval,
        status: ApprovalStatus,
        actor_id: str,
        comments: str | None,
    ) -> None:
        approval.status = status.value
        approval.decided_at = self._clock.now()
        approval.decided_by = actor_id
        approval.updated_by = actor_id
        if comments is not None:
            approval.comments = comments

    def _cancel(self, approvals: Sequence[JournalEntryApproval], actor_id: str) -> None:
        for approval in approvals:
            self._decide(approval, ApprovalStatus.CANCELLED, actor_id, None)

    def _notify_requester(
        self,
        scope: LedgerScope,
        entry: JournalEntry,
        approval: JournalEntryApproval,
        kind: NotificationKind,
        actor_id: str,
        comments: str | None,
        payload: dict | None = None,
    ) -> None:
        self._journal.notifications.dispatch(
            JournalNotification(
                kind=kind,
                scope=scope,
                entry_id=entry.id,
                reference=entry.reference,
                actor_id=actor_id,
                recipients=(approval.requested_by,),
                comments=comments,
                payload={"approval_id": str(approval.id), **(payload or {})},
            )
        )
