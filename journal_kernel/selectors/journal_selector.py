"""
Module: journal_kernel.selectors.journal_selector
Responsibility: Read-only queries over journal entries, approvals and the
    audit trail: filtered entry lists, approval queues, audit history,
    monitoring metrics, period ledger balances, validation reports and
    anomaly detection.
Architecture position: Kernel > Selectors.  May import from models/,
    selectors/base.py and pure domain helpers.  MUST NOT import from
    services/.

Invariants enforced:
    - Every query filters on tenant_id and company_id.
    - ``is_balanced`` on every view uses the same validator and tolerance
      as posting, so a view never disagrees with the write side.
    - Ledger balances derive from journal lines at query time; there are no
      stored balances.

Failure modes:
    - EntryNotFoundError from validate_entry() for an id outside the scope.

Audit relevance:
    audit_trail() is the read path for the append-only lifecycle record.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select

from journal_kernel.domain.approval import ApprovalStatus
from journal_kernel.domain.balance import BALANCE_TOLERANCE, check_balance
from journal_kernel.domain.dtos import EntrySpec, to_decimal
from journal_kernel.domain.lifecycle import FINALIZED_STATUSES, JournalEntryStatus
from journal_kernel.domain.scope import LedgerScope
from journal_kernel.exceptions import EntryNotFoundError
from journal_kernel.models.account import Account, AccountType, DEBIT_NORMAL_TYPES
from journal_kernel.models.approval import JournalEntryApproval
from journal_kernel.models.audit import AuditAction, JournalEntryAudit
from journal_kernel.models.journal import JournalEntry, JournalLine
from journal_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")

DEFAULT_LARGE_AMOUNT_WARNING = Decimal("1000000")


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class LineView:
    line_no: int
    account_id: UUID
    account_code: str | None
    debit: Decimal
    credit: Decimal
    memo: str | None
    dimensions: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EntryView:
    """A journal entry with its lines, annotated with balance status."""

    id: UUID
    reference: str
    entry_date: date
    memo: str
    status: JournalEntryStatus
    origin: str
    entry_type_id: UUID | None
    total_debit: Decimal
    total_credit: Decimal
    is_balanced: bool
    created_by: str
    posted_at: datetime | None
    posted_by: str | None
    reversal_of_id: UUID | None
    adjustment_of_id: UUID | None
    template_id: UUID | None
    lines: tuple[LineView, ...] = ()

    @property
    def line_count(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class ApprovalView:
    id: UUID
    entry_id: UUID
    reference: str
    entry_date: date
    memo: str
    total_debit: Decimal
    requested_by: str
    approver_id: str | None
    requested_at: datetime
    comments: str | None


@dataclass(frozen=True)
class AuditView:
    id: UUID
    entry_id: UUID
    actor_id: str
    action: AuditAction
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    comments: str | None
    occurred_at: datetime
    request_metadata: dict[str, Any] | None


@dataclass(frozen=True)
class JournalMetrics:
    """Monitoring counters for a scope (and optional date window)."""

    total_entries: int
    by_status: dict[str, int]
    unbalanced_count: int

    def count(self, status: JournalEntryStatus) -> int:
        return self.by_status.get(status.value, 0)

    @property
    def posting_rate(self) -> Decimal:
        """Share of entries that reached POSTED (or a status beyond it)."""
        if self.total_entries == 0:
            return ZERO
        posted = sum(self.count(s) for s in FINALIZED_STATUSES)
        return (Decimal(posted) / Decimal(self.total_entries)).quantize(Decimal("0.0001"))


@dataclass(frozen=True)
class AccountBalance:
    """Per-account activity for a period, signed by the account's normal side."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    opening_balance: Decimal
    period_debit: Decimal
    period_credit: Decimal

    @property
    def is_debit_normal(self) -> bool:
        return self.account_type in DEBIT_NORMAL_TYPES

    @property
    def period_movement(self) -> Decimal:
        movement = self.period_debit - self.period_credit
        return movement if self.is_debit_normal else -movement

    @property
    def closing_balance(self) -> Decimal:
        return self.opening_balance + self.period_movement


@dataclass(frozen=True)
class ValidationReport:
    is_valid: bool
    is_balanced: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class Anomaly:
    kind: str
    severity: str
    description: str
    entry_ids: tuple[UUID, ...] = ()


# =============================================================================
# Selector
# =============================================================================


class JournalSelector(BaseSelector):
    """
    Read-only journal queries.

    Guarantees:
        - Returns DTOs, never ORM instances.
        - Never mutates the session.
    """

    def __init__(
        self,
        session,
        *,
        balance_tolerance: Decimal = BALANCE_TOLERANCE,
        large_amount_warning: Decimal = DEFAULT_LARGE_AMOUNT_WARNING,
    ):
        super().__init__(session)
        self._tolerance = balance_tolerance
        self._large_amount = large_amount_warning

    # -- entries --------------------------------------------------------------

    def get_entry(self, scope: LedgerScope, entry_id: UUID) -> EntryView | None:
        entry = self._load_entry(scope, entry_id)
        return self._to_view(entry) if entry else None

    def list_entries(
        self,
        scope: LedgerScope,
        status: JournalEntryStatus | str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        entry_type_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EntryView]:
        """Entries newest first, filtered by status, date window and type."""
        query = self._scoped_entries(scope, date_from, date_to)
        if status is not None:
            query = query.where(JournalEntry.status == JournalEntryStatus(status).value)
        if entry_type_id is not None:
            query = query.where(JournalEntry.entry_type_id == entry_type_id)
        query = (
            query.order_by(JournalEntry.entry_date.desc(), JournalEntry.reference.desc())
            .limit(limit)
            .offset(offset)
        )
        return [self._to_view(e) for e in self.session.execute(query).scalars()]

    # -- approvals ------------------------------------------------------------

    def pending_approvals(
        self,
        scope: LedgerScope,
        approver_id: str | None = None,
    ) -> list[ApprovalView]:
        """
        PENDING approvals in scope, oldest first.

        With ``approver_id``: only approvals designated to that user or open
        to anyone.
        """
        query = (
            select(JournalEntryApproval, JournalEntry)
            .join(JournalEntry, JournalEntry.id == JournalEntryApproval.entry_id)
            .where(
                JournalEntryApproval.tenant_id == scope.tenant_id,
                JournalEntryApproval.company_id == scope.company_id,
                JournalEntryApproval.status == ApprovalStatus.PENDING.value,
            )
        )
        if approver_id is not None:
            query = query.where(or_(
                JournalEntryApproval.approver_id == approver_id,
                JournalEntryApproval.approver_id.is_(None),
            ))
        query = query.order_by(JournalEntryApproval.requested_at, JournalEntryApproval.position)

        return [
            ApprovalView(
                id=approval.id,
                entry_id=entry.id,
                reference=entry.reference,
                entry_date=entry.entry_date,
                memo=entry.memo,
                total_debit=entry.total_debit,
                requested_by=approval.requested_by,
                approver_id=approval.approver_id,
                requested_at=approval.requested_at,
                comments=approval.comments,
            )
            for approval, entry in self.session.execute(query).all()
        ]

    # -- audit ----------------------------------------------------------------

    def audit_trail(
        self,
        scope: LedgerScope,
        entry_id: UUID | None = None,
        action: AuditAction | str | None = None,
        limit: int = 100,
    ) -> list[AuditView]:
        """Audit records newest first."""
        query = select(JournalEntryAudit).where(
            JournalEntryAudit.tenant_id == scope.tenant_id,
            JournalEntryAudit.company_id == scope.company_id,
        )
        if entry_id is not None:
            query = query.where(JournalEntryAudit.entry_id == entry_id)
        if action is not None:
            query = query.where(JournalEntryAudit.action == AuditAction(action).value)
        query = query.order_by(JournalEntryAudit.occurred_at.desc()).limit(limit)

        return [
            AuditView(
                id=row.id,
                entry_id=row.entry_id,
                actor_id=row.actor_id,
                action=AuditAction(row.action),
                before=row.before,
                after=row.after,
                comments=row.comments,
                occurred_at=row.occurred_at,
                request_metadata=row.request_metadata,
            )
            for row in self.session.execute(query).scalars()
        ]

    # -- monitoring -----------------------------------------------------------

    def metrics(
        self,
        scope: LedgerScope,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> JournalMetrics:
        status_query = (
            select(JournalEntry.status, func.count(JournalEntry.id))
            .where(*self._scope_filters(scope, date_from, date_to))
            .group_by(JournalEntry.status)
        )
        by_status = {
            JournalEntryStatus(status).value: count
            for status, count in self.session.execute(status_query).all()
        }

        totals_query = (
            select(
                JournalLine.entry_id,
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .join(JournalEntry, JournalEntry.id == JournalLine.entry_id)
            .where(*self._scope_filters(scope, date_from, date_to))
            .group_by(JournalLine.entry_id)
        )
        unbalanced = sum(
            1
            for _, debit, credit in self.session.execute(totals_query).all()
            if abs(Decimal(str(debit)) - Decimal(str(credit))) >= self._tolerance
        )

        return JournalMetrics(
            total_entries=sum(by_status.values()),
            by_status=by_status,
            unbalanced_count=unbalanced,
        )

    def ledger_balances(
        self,
        scope: LedgerScope,
        date_from: date,
        date_to: date,
    ) -> list[AccountBalance]:
        """
        Opening balance and period activity per account, from finalized
        entries only (POSTED, REVERSED, VOIDED).  Reversal and void entries
        are POSTED, so a reversed entry and its reversal net to zero.
        """
        opening = self._account_totals(
            scope, JournalEntry.entry_date < date_from,
        )
        period = self._account_totals(
            scope, JournalEntry.entry_date >= date_from, JournalEntry.entry_date <= date_to,
        )

        account_ids = set(opening) | set(period)
        if not account_ids:
            return []
        accounts = self.session.execute(
            select(Account).where(Account.id.in_(account_ids)).order_by(Account.code)
        ).scalars()

        balances = []
        for account in accounts:
            account_type = AccountType(account.account_type)
            opening_debit, opening_credit = opening.get(account.id, (ZERO, ZERO))
            opening_net = opening_debit - opening_credit
            if account_type not in DEBIT_NORMAL_TYPES:
                opening_net = -opening_net
            period_debit, period_credit = period.get(account.id, (ZERO, ZERO))
            balances.append(AccountBalance(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                account_type=account_type,
                opening_balance=opening_net,
                period_debit=period_debit,
                period_credit=period_credit,
            ))
        return balances

    def _account_totals(self, scope: LedgerScope, *date_filters) -> dict[UUID, tuple[Decimal, Decimal]]:
        """Debit and credit sums per account over finalized entries."""
        rows = self.session.execute(
            select(
                JournalLine.account_id,
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .join(JournalEntry, JournalEntry.id == JournalLine.entry_id)
            .where(
                JournalEntry.tenant_id == scope.tenant_id,
                JournalEntry.company_id == scope.company_id,
                JournalEntry.status.in_([s.value for s in FINALIZED_STATUSES]),
                *date_filters,
            )
            .group_by(JournalLine.account_id)
        ).all()
        return {
            account_id: (Decimal(str(debit)), Decimal(str(credit)))
            for account_id, debit, credit in rows
        }

    # -- validation -----------------------------------------------------------

    def validate_entry(self, scope: LedgerScope, entry_id: UUID) -> ValidationReport:
        """Report problems with a stored entry without changing it."""
        entry = self._load_entry(scope, entry_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return self._report(scope, entry.lines)

    def validate_spec(self, scope: LedgerScope, spec: EntrySpec) -> ValidationReport:
        """Pre-flight check of a candidate entry."""
        return self._report(scope, spec.lines)

    def _report(self, scope: LedgerScope, lines) -> ValidationReport:
        errors: list[str] = []
        warnings: list[str] = []

        if not lines:
            return ValidationReport(
                is_valid=False,
                is_balanced=False,
                errors=("Journal entry must have at least one line",),
            )

        for line_no, line in enumerate(lines, start=1):
            if not (to_decimal(line.debit).is_finite() and to_decimal(line.credit).is_finite()):
                return ValidationReport(
                    is_valid=False,
                    is_balanced=False,
                    errors=(f"Line {line_no} has a non-finite amount",),
                )

        check = check_balance(lines, self._tolerance)
        if not check.is_balanced:
            errors.append(
                f"Journal entry is not balanced. Debits: {check.total_debit}, "
                f"Credits: {check.total_credit}"
            )

        account_ids = {line.account_id for line in lines}
        accounts = {
            a.id: a for a in self.session.execute(
                select(Account).where(
                    Account.id.in_(account_ids),
                    Account.tenant_id == scope.tenant_id,
                    Account.company_id == scope.company_id,
                )
            ).scalars()
        }
        for line in lines:
            account = accounts.get(line.account_id)
            if account is None:
                errors.append(f"Account {line.account_id} does not exist")
            elif not account.is_active:
                warnings.append(f"Account {account.code} ({account.name}) is inactive")

        for line in lines:
            largest = max(line.debit or ZERO, line.credit or ZERO)
            if largest > self._large_amount:
                warnings.append(f"Large amount detected: {largest}")

        return ValidationReport(
            is_valid=not errors,
            is_balanced=check.is_balanced,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    def detect_anomalies(
        self,
        scope: LedgerScope,
        date_from: date,
        date_to: date,
    ) -> list[Anomaly]:
        """Large, unbalanced and duplicate POSTED entries in a window."""
        entries = list(self.session.execute(
            self._scoped_entries(scope, date_from, date_to)
            .where(JournalEntry.status == JournalEntryStatus.POSTED.value)
        ).scalars())

        anomalies: list[Anomaly] = []
        for entry in entries:
            largest = max(entry.total_debit, entry.total_credit)
            if largest > self._large_amount:
                anomalies.append(Anomaly(
                    kind="large_amount",
                    severity="high",
                    description=f"Unusually large amount: {largest}",
                    entry_ids=(entry.id,),
                ))

        unbalanced = tuple(e.id for e in entries if not check_balance(e.lines, self._tolerance).is_balanced)
        if unbalanced:
            anomalies.append(Anomaly(
                kind="unbalanced_entries",
                severity="critical",
                description="Found unbalanced journal entries",
                entry_ids=unbalanced,
            ))

        # Same memo, date and totals: likely keyed in twice.
        groups: dict[tuple, list[UUID]] = defaultdict(list)
        for entry in entries:
            groups[(entry.memo, entry.entry_date, entry.total_debit, entry.total_credit)].append(entry.id)
        for ids in groups.values():
            if len(ids) > 1:
                anomalies.append(Anomaly(
                    kind="duplicate_entries",
                    severity="medium",
                    description=f"Found {len(ids)} duplicate entries",
                    entry_ids=tuple(ids),
                ))
        return anomalies

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _scope_filters(scope: LedgerScope, date_from: date | None, date_to: date | None) -> list:
        filters = [
            JournalEntry.tenant_id == scope.tenant_id,
            JournalEntry.company_id == scope.company_id,
        ]
        if date_from is not None:
            filters.append(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            filters.append(JournalEntry.entry_date <= date_to)
        return filters

    def _scoped_entries(self, scope: LedgerScope, date_from: date | None, date_to: date | None):
        return select(JournalEntry).where(*self._scope_filters(scope, date_from, date_to))

    def _load_entry(self, scope: LedgerScope, entry_id: UUID) -> JournalEntry | None:
        return self.session.execute(
            select(JournalEntry).where(
                JournalEntry.id == entry_id,
                JournalEntry.tenant_id == scope.tenant_id,
                JournalEntry.company_id == scope.company_id,
            )
        ).scalar_one_or_none()

    def _to_view(self, entry: JournalEntry) -> EntryView:
        balance = check_balance(entry.lines, self._tolerance)
        return EntryView(
            id=entry.id,
            reference=entry.reference,
            entry_date=entry.entry_date,
            memo=entry.memo,
            status=JournalEntryStatus(entry.status),
            origin=entry.origin,
            entry_type_id=entry.entry_type_id,
            total_debit=balance.total_debit,
            total_credit=balance.total_credit,
            is_balanced=balance.is_balanced,
            created_by=entry.created_by,
            posted_at=entry.posted_at,
            posted_by=entry.posted_by,
            reversal_of_id=entry.reversal_of_id,
            adjustment_of_id=entry.adjustment_of_id,
            template_id=entry.template_id,
            lines=tuple(
                LineView(
                    line_no=line.line_no,
                    account_id=line.account_id,
                    account_code=line.account.code if line.account else None,
                    debit=line.debit,
                    credit=line.credit,
                    memo=line.memo,
                    dimensions=line.dimensions,
                )
                for line in entry.lines
            ),
        )
