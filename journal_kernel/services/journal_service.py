"""
JournalService -- the journal entry lifecycle.

Responsibility:
    Creates, edits, posts, reverses, adjusts and voids journal entries.
    Every operation takes the owning ``LedgerScope`` and the acting user
    explicitly; nothing is read from ambient request state.

Architecture position:
    Kernel > Services -- imperative shell.  Pure rules live in
    ``journal_kernel.domain`` (balance, entry type policy, lifecycle table);
    this module loads rows, applies the rules, writes rows and audit
    records, then flushes.  It never commits.

Invariants enforced:
    - Every transition to POSTED runs the balance validator; an unbalanced
      entry raises UnbalancedEntryError and nothing is written.
    - Lines are validated (non-empty, non-negative, active accounts in
      scope) and the entry type policy is enforced before persistence.
    - POSTED entries are never edited.  Reversal, adjustment and void write
      new POSTED entries that point back at the original.
    - Reversal and void call the linked transaction handler registered for
      the entry's ``source_domain`` inside the same transaction.  If the
      handler raises, the caller's rollback undoes the reversal too.

Failure modes:
    - EntryNotFoundError: the id does not exist in this scope.
    - InvalidStatusError and its reversal/adjustment/void variants.
    - ValidationError / PolicyError subclasses for bad input.
    - ApprovalRequiredError: direct post of an approval-gated entry type.

Audit relevance:
    CREATED, UPDATED, POSTED, REVERSED, VOIDED and ADJUSTED audit rows are
    written in the same flush as the change they describe.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from journal_kernel.domain.approval import ApprovalStatus
from journal_kernel.domain.balance import BALANCE_TOLERANCE, check_balance
from journal_kernel.domain.clock import Clock, SystemClock
from journal_kernel.domain.dtos import EntrySpec, LineSpec
from journal_kernel.domain.entry_type_policy import enforce_entry_type_policy
from journal_kernel.domain.lifecycle import EntryOrigin, JournalEntryStatus
from journal_kernel.domain.ports import (
    JournalNotification,
    LinkedReversalOutcome,
    LinkedTransactionHandler,
    NotificationKind,
)
from journal_kernel.domain.scope import LedgerScope, RequestMetadata
from journal_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    ApprovalRequiredError,
    EmptyEntryError,
    EntryNotFoundError,
    InvalidAmountError,
    InvalidStatusError,
    InvalidStatusForAdjustmentError,
    InvalidStatusForReversalError,
    InvalidStatusForVoidError,
    MissingFieldError,
    NegativeAmountError,
    UnbalancedEntryError,
)
from journal_kernel.logging_config import get_logger
from journal_kernel.models.approval import JournalEntryApproval
from journal_kernel.models.audit import AuditAction
from journal_kernel.models.entry_type import JournalEntryType
from journal_kernel.models.journal import JournalEntry, JournalLine
from journal_kernel.services.account_service import AccountService
from journal_kernel.services.audit_service import AuditTrailRecorder, snapshot
from journal_kernel.services.entry_type_service import EntryTypeService
from journal_kernel.services.notification_service import NotificationDispatcher
from journal_kernel.services.reference_service import DEFAULT_PREFIX, ReferenceGenerator

logger = get_logger("services.journal")


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of reversing (or voiding) a posted entry."""

    original: JournalEntry
    reversal: JournalEntry
    linked: LinkedReversalOutcome | None = None

    @property
    def movements_reversed(self) -> int:
        return self.linked.movements_reversed if self.linked else 0

    @property
    def stock_restored(self) -> Decimal:
        return self.linked.stock_restored if self.linked else Decimal("0")


class JournalService:
    """
    Journal entry lifecycle operations.

    Contract:
        All methods flush and return ORM rows; the caller's transaction
        (``session_scope()`` or the batch savepoints) decides commit or
        rollback.

    Usage:
        service = JournalService(session, clock)
        service.register_linked_handler("inventory", inventory_adapter)
        entry = service.create_entry(scope, spec, actor_id="u-1")
        service.post_entry(scope, entry.id, actor_id="u-1")
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        balance_tolerance: Decimal = BALANCE_TOLERANCE,
        reference_prefix: str = DEFAULT_PREFIX,
        notifications: NotificationDispatcher | None = None,
        linked_handlers: dict[str, LinkedTransactionHandler] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._tolerance = balance_tolerance
        self._linked_handlers: dict[str, LinkedTransactionHandler] = dict(linked_handlers or {})
        self.notifications = notifications or NotificationDispatcher()
        self.audit = AuditTrailRecorder(session, self._clock)
        self.references = ReferenceGenerator(session, reference_prefix)
        self.accounts = AccountService(session)
        self.entry_types = EntryTypeService(session)

    def register_linked_handler(self, source_domain: str, handler: LinkedTransactionHandler) -> None:
        self._linked_handlers[source_domain] = handler

    # -- reads ----------------------------------------------------------------

    def get_entry(self, scope: LedgerScope, entry_id: UUID) -> JournalEntry:
        entry = self._session.execute(
            self._entry_query(scope, entry_id)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def lock_entry(self, scope: LedgerScope, entry_id: UUID) -> JournalEntry:
        """Load an entry with ``SELECT ... FOR UPDATE``."""
        entry = self._session.execute(
            self._entry_query(scope, entry_id).with_for_update()
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    @staticmethod
    def _entry_query(scope: LedgerScope, entry_id: UUID):
        return select(JournalEntry).where(
            JournalEntry.id == entry_id,
            JournalEntry.tenant_id == scope.tenant_id,
            JournalEntry.company_id == scope.company_id,
        )

    # -- create / update ------------------------------------------------------

    def create_entry(
        self,
        scope: LedgerScope,
        spec: EntrySpec,
        *,
        actor_id: str,
        validate_balance: bool = True,
        origin: EntryOrigin = EntryOrigin.MANUAL,
        metadata: RequestMetadata | None = None,
        post_immediately: bool = False,
        template_id: UUID | None = None,
        comments: str | None = None,
    ) -> JournalEntry:
        """
        Validate and persist a new entry.

        The entry starts in PENDING_APPROVAL (with one open approval slot)
        when ``spec.requires_approval`` is set or its type requires approval.
        Otherwise it starts in DRAFT, or in POSTED when ``post_immediately``
        is set (recurring runs).

        Raises:
            EmptyEntryError, MissingFieldError, InvalidAmountError,
            NegativeAmountError, AccountNotFoundError,
            AccountInactiveError, InvalidEntryTypeError, PolicyError
            subclasses, UnbalancedEntryError, DuplicateReferenceError.
        """
        if spec.entry_date is None:
            raise MissingFieldError("entry_date", spec.reference)
        self.validate_lines(scope, spec.lines, reference=spec.reference)
        entry_type = self._resolve_entry_type(scope, spec.entry_type_id)
        if entry_type is not None:
            enforce_entry_type_policy(entry_type.to_rules(), spec.lines)
        if validate_balance or post_immediately:
            self.require_balanced(spec.lines)

        if spec.reference and spec.reference.strip():
            reference = self.references.claim(scope, spec.reference)
        else:
            reference = self.references.next_reference(scope, spec.entry_date)

        needs_approval = spec.requires_approval or (
            entry_type is not None and entry_type.requires_approval
        )
        if needs_approval:
            status = JournalEntryStatus.PENDING_APPROVAL
        elif post_immediately:
            status = JournalEntryStatus.POSTED
        else:
            status = JournalEntryStatus.DRAFT

        now = self._clock.now()
        entry = JournalEntry(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            entry_date=spec.entry_date,
            memo=spec.memo or "",
            reference=reference,
            status=status.value,
            origin=EntryOrigin(origin).value,
            entry_type_id=entry_type.id if entry_type else None,
            template_id=template_id,
            source_domain=spec.source_domain,
            source_id=spec.source_id,
            created_by=actor_id,
            lines=self._build_lines(spec.lines),
        )
        if status == JournalEntryStatus.POSTED:
            entry.posted_at = now
            entry.posted_by = actor_id
        if needs_approval:
            entry.approvals.append(
                JournalEntryApproval(
                    tenant_id=scope.tenant_id,
                    company_id=scope.company_id,
                    position=1,
                    requested_by=actor_id,
                    approver_id=None,
                    status=ApprovalStatus.PENDING.value,
                    requested_at=now,
                    created_by=actor_id,
                )
            )
        self._session.add(entry)
        self._session.flush()

        self.audit.record(
            scope,
            entry.id,
            actor_id=actor_id,
            action=AuditAction.CREATED,
            after=snapshot(entry),
            comments=comments,
            metadata=metadata,
        )
        if status == JournalEntryStatus.POSTED:
            self.audit.record(
                scope,
                entry.id,
                actor_id=actor_id,
                action=AuditAction.POSTED,
                after={"status": status.value},
                metadata=metadata,
            )

        logger.info(
            "entry_created",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "reference": reference,
                "status": status.value,
                "origin": EntryOrigin(origin).value,
                "line_count": len(spec.lines),
                "actor_id": actor_id,
            },
        )

        self.notifications.dispatch(
            JournalNotification(
                kind=NotificationKind.ENTRY_CREATED,
                scope=scope,
                entry_id=entry.id,
                reference=reference,
                actor_id=actor_id,
                payload={"status": status.value},
            )
        )
        return entry

    def update_draft(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        spec: EntrySpec,
        *,
        actor_id: str,
        metadata: RequestMetadata | None = None,
    ) -> JournalEntry:
        """Replace header fields and lines of a DRAFT entry.

        Balance is not required while the entry is a draft.
        """
        entry = self.lock_entry(scope, entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidStatusError(str(entry_id), JournalEntryStatus(entry.status).value, "update")

        if spec.entry_date is None:
            raise MissingFieldError("entry_date", entry.reference)
        self.validate_lines(scope, spec.lines, reference=entry.reference)
        entry_type = self._resolve_entry_type(scope, spec.entry_type_id)
        if entry_type is not None:
            enforce_entry_type_policy(entry_type.to_rules(), spec.lines)

        before = snapshot(entry)

        if spec.reference and spec.reference.strip() != entry.reference:
            entry.reference = self.references.claim(scope, spec.reference)

        # Old lines must be gone before new ones reuse their line numbers.
        entry.lines.clear()
        self._session.flush()

        entry.entry_date = spec.entry_date
        entry.memo = spec.memo or ""
        entry.entry_type_id = entry_type.id if entry_type else None
        entry.source_domain = spec.source_domain
        entry.source_id = spec.source_id
        entry.lines.extend(self._build_lines(spec.lines))
        entry.updated_by = actor_id
        self._session.flush()

        self.audit.record(
            scope,
            entry.id,
            actor_id=actor_id,
            action=AuditAction.UPDATED,
            before=before,
            after=snapshot(entry),
            metadata=metadata,
        )
        logger.info(
            "entry_updated",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "reference": entry.reference,
                "line_count": len(spec.lines),
            },
        )
        return entry

    # -- posting --------------------------------------------------------------

    def post_entry(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        *,
        actor_id: str,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> JournalEntry:
        """DRAFT -> POSTED for entries whose type does not require approval."""
        entry = self.lock_entry(scope, entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidStatusError(str(entry_id), JournalEntryStatus(entry.status).value, "post")
        if entry.entry_type is not None and entry.entry_type.requires_approval:
            raise ApprovalRequiredError(str(entry_id), entry.entry_type.name)

        return self.apply_posting(
            scope, entry, actor_id=actor_id, comments=comments, metadata=metadata,
        )

    def apply_posting(
        self,
        scope: LedgerScope,
        entry: JournalEntry,
        *,
        actor_id: str,
        comments: str | None = None,
        metadata: RequestMetadata | None = None,
    ) -> JournalEntry:
        """
        Move an already-authorised entry to POSTED.

        Shared by direct posting and the approval workflow.  The caller has
        checked the source status.
        """
        if not entry.lines:
            raise EmptyEntryError(entry.reference)
        self.require_balanced(entry.lines, entry_id=entry.id)

        previous = JournalEntryStatus(entry.status)
        entry.status = JournalEntryStatus.POSTED.value
        entry.posted_at = self._clock.now()
        entry.posted_by = actor_id
        entry.updated_by = actor_id
        self._session.flush()

        self.audit.record(
            scope,
            entry.id,
            actor_id=actor_id,
            action=AuditAction.POSTED,
            before={"status": previous.value},
            after={"status": JournalEntryStatus.POSTED.value},
            comments=comments,
            metadata=metadata,
        )
        logger.info(
            "entry_posted",
            extra={
                **scope.log_fields(),
                "entry_id": str(entry.id),
                "reference": entry.reference,
                "from_status": previous.value,
                "total_debit": str(entry.total_debit),
                "actor_id": actor_id,
            },
        )
        return entry

    # -- corrections ----------------------------------------------------------

    def reverse_entry(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        *,
        actor_id: str,
        reason: str,
        reverse_date: date | None = None,
        metadata: RequestMetadata | None = None,
    ) -> ReversalResult:
        """
        POSTED -> REVERSED, writing a mirror-image POSTED entry.

        The reversal is ``REV-<reference>``; every line has debit and credit
        swapped.  The linked transaction handler (if any) runs before this
        returns.
        """
        entry = self.lock_entry(scope, entry_id)
        if entry.status != JournalEntryStatus.POSTED:
            raise InvalidStatusForReversalError(str(entry_id), JournalEntryStatus(entry.status).value)

        return self._offset(
            scope,
            entry,
            actor_id=actor_id,
            reason=reason,
            on_date=reverse_date,
            target=JournalEntryStatus.REVERSED,
            prefix="REV",
            label="Reversal",
            origin=EntryOrigin.REVERSAL,
            action=AuditAction.REVERSED,
            metadata=metadata,
        )

    def void_entry(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        *,
        actor_id: str,
        reason: str,
        void_date: date | None = None,
        metadata: RequestMetadata | None = None,
    ) -> ReversalResult:
        """POSTED -> VOIDED with an offsetting ``VOID-<reference>`` entry."""
        entry = self.lock_entry(scope, entry_id)
        if entry.status != JournalEntryStatus.POSTED:
            raise InvalidStatusForVoidError(str(entry_id), JournalEntryStatus(entry.status).value)

        return self._offset(
            scope,
            entry,
            actor_id=actor_id,
            reason=reason,
            on_date=void_date,
            target=JournalEntryStatus.VOIDED,
            prefix="VOID",
            label="Void",
            origin=EntryOrigin.VOID,
            action=AuditAction.VOIDED,
            metadata=metadata,
        )

    def adjust_entry(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        adjustments: Sequence[LineSpec],
        *,
        actor_id: str,
        reason: str,
        adjustment_date: date | None = None,
        metadata: RequestMetadata | None = None,
    ) -> JournalEntry:
        """
        Post a balanced correcting entry ``ADJ-<reference>`` against a
        POSTED entry.  The original keeps its status and lines.
        """
        original = self.lock_entry(scope, entry_id)
        if original.status != JournalEntryStatus.POSTED:
            raise InvalidStatusForAdjustmentError(
                str(entry_id), JournalEntryStatus(original.status).value,
            )

        adjustments = tuple(adjustments)
        self.validate_lines(scope, adjustments, reference=original.reference)
        if original.entry_type is not None:
            enforce_entry_type_policy(original.entry_type.to_rules(), adjustments)
        self.require_balanced(adjustments)

        now = self._clock.now()
        adjustment = JournalEntry(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            entry_date=adjustment_date or self._clock.today(),
            memo=f"Adjustment for {original.memo} - {reason}",
            reference=self.references.derived(scope, "ADJ", original.reference),
            status=JournalEntryStatus.POSTED.value,
            origin=EntryOrigin.ADJUSTMENT.value,
            entry_type_id=original.entry_type_id,
            adjustment_of_id=original.id,
            posted_at=now,
            posted_by=actor_id,
            created_by=actor_id,
            lines=self._build_lines(adjustments),
        )
        self._session.add(adjustment)
        self._session.flush()

        self.audit.record(
            scope,
            original.id,
            actor_id=actor_id,
            action=AuditAction.ADJUSTED,
            after={
                "adjustment_entry_id": str(adjustment.id),
                "adjustment_reference": adjustment.reference,
            },
            comments=reason,
            metadata=metadata,
        )
        self.audit.record(
            scope,
            adjustment.id,
            actor_id=actor_id,
            action=AuditAction.CREATED,
            after=snapshot(adjustment),
            comments=f"Adjustment of {original.reference}",
            metadata=metadata,
        )
        logger.info(
            "entry_adjusted",
            extra={
                **scope.log_fields(),
                "entry_id": str(original.id),
                "adjustment_entry_id": str(adjustment.id),
                "reference": adjustment.reference,
                "actor_id": actor_id,
            },
        )
        return adjustment

    def _offset(
        self,
        scope: LedgerScope,
        original: JournalEntry,
        *,
        actor_id: str,
        reason: str,
        on_date: date | None,
        target: JournalEntryStatus,
        prefix: str,
        label: str,
        origin: EntryOrigin,
        action: AuditAction,
        metadata: RequestMetadata | None,
    ) -> ReversalResult:
        before = snapshot(original)
        now = self._clock.now()

        lines = [
            JournalLine(
                line_no=line.line_no,
                account_id=line.account_id,
                debit=line.credit,
                credit=line.debit,
                memo=f"{label} of {line.memo}" if line.memo else label,
                department=line.department,
                project=line.project,
                location=line.location,
            )
            for line in original.lines
        ]
        self.require_balanced(lines, entry_id=original.id)

        offset = JournalEntry(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            entry_date=on_date or self._clock.today(),
            memo=f"{label} of {original.memo} - {reason}",
            reference=self.references.derived(scope, prefix, original.reference),
            status=JournalEntryStatus.POSTED.value,
            origin=origin.value,
            entry_type_id=original.entry_type_id,
            reversal_of_id=original.id,
            source_domain=original.source_domain,
            source_id=original.source_id,
            posted_at=now,
            posted_by=actor_id,
            created_by=actor_id,
            lines=lines,
        )
        self._session.add(offset)
        self._session.flush()

        original.status = target.value
        original.updated_by = actor_id
        self._session.flush()

        linked = self._reverse_linked(scope, original, offset, reason=reason, actor_id=actor_id)

        self.audit.record(
            scope,
            original.id,
            actor_id=actor_id,
            action=action,
            before=before,
            after={
                "status": target.value,
                "offset_entry_id": str(offset.id),
                "offset_reference": offset.reference,
            },
            comments=reason,
            metadata=metadata,
        )
        self.audit.record(
            scope,
            offset.id,
            actor_id=actor_id,
            action=AuditAction.CREATED,
            after=snapshot(offset),
            comments=f"{label} of {original.reference}",
            metadata=metadata,
        )

        logger.info(
            f"entry_{target.value.lower()}",
            extra={
                **scope.log_fields(),
                "entry_id": str(original.id),
                "offset_entry_id": str(offset.id),
                "reference": offset.reference,
                "movements_reversed": linked.movements_reversed if linked else 0,
                "actor_id": actor_id,
            },
        )
        return ReversalResult(original=original, reversal=offset, linked=linked)

    def _reverse_linked(
        self,
        scope: LedgerScope,
        original: JournalEntry,
        offset: JournalEntry,
        *,
        reason: str,
        actor_id: str,
    ) -> LinkedReversalOutcome | None:
        if not original.source_domain or not original.source_id:
            return None
        handler = self._linked_handlers.get(original.source_domain)
        if handler is None:
            logger.debug(
                "linked_handler_not_registered",
                extra={"entry_id": str(original.id), "source_domain": original.source_domain},
            )
            return None

        outcome = handler.reverse_linked(
            scope,
            original.source_id,
            reversal_entry_id=offset.id,
            reason=reason,
            actor_id=actor_id,
        )
        logger.info(
            "linked_transaction_reversed",
            extra={
                **scope.log_fields(),
                "entry_id": str(original.id),
                "source_domain": original.source_domain,
                "source_id": original.source_id,
                "movements_reversed": outcome.movements_reversed,
                "stock_restored": str(outcome.stock_restored),
            },
        )
        return outcome

    # -- validation helpers ---------------------------------------------------

    def validate_lines(
        self,
        scope: LedgerScope,
        lines: Sequence[LineSpec],
        *,
        reference: str | None = None,
    ) -> None:
        """At least one line, finite non-negative amounts, active accounts in scope."""
        if not lines:
            raise EmptyEntryError(reference)
        for line_no, line in enumerate(lines, start=1):
            if not (line.debit.is_finite() and line.credit.is_finite()):
                raise InvalidAmountError(line_no, line.debit, line.credit)
            if line.debit < 0 or line.credit < 0:
                raise NegativeAmountError(line_no, line.debit, line.credit)

        accounts = self.accounts.accounts_by_id(scope, (line.account_id for line in lines))
        for line in lines:
            account = accounts.get(line.account_id)
            if account is None:
                raise AccountNotFoundError(str(line.account_id))
            if not account.is_active:
                raise AccountInactiveError(str(account.id), account.code)

    def require_balanced(self, lines, *, entry_id: UUID | None = None) -> None:
        check = check_balance(lines, self._tolerance)
        if not check.is_balanced:
            raise UnbalancedEntryError(
                check.total_debit,
                check.total_credit,
                entry_id=str(entry_id) if entry_id else None,
            )

    def _resolve_entry_type(self, scope: LedgerScope, entry_type_id: UUID | None) -> JournalEntryType | None:
        if entry_type_id is None:
            return None
        return self.entry_types.get_active(scope, entry_type_id)

    @staticmethod
    def _build_lines(lines: Sequence[LineSpec]) -> list[JournalLine]:
        return [
            JournalLine(
                line_no=line_no,
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                memo=line.memo,
                department=line.department,
                project=line.project,
                location=line.location,
            )
            for line_no, line in enumerate(lines, start=1)
        ]
