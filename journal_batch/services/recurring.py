"""
RecurringScheduler -- materializes due recurring templates into entries.

Contract:
    ``process_recurring(scope, as_of, actor_id=...)`` creates at most one
    POSTED entry per due template, then moves the template's
    ``next_run_date`` forward by one period.

Architecture: journal_batch/services.  Uses JournalService for validation,
    reference claiming, persistence and audit; formulas are evaluated with
    the kernel's restricted FormulaEvaluator.

Invariants enforced:
    - A template is due when active, recurring, ``next_run_date <= as_of``
      and (no ``end_date`` or ``end_date >= as_of``).
    - Each template runs in its own SAVEPOINT.  A failing template (formula
      error, unbalanced lines, policy violation, inactive account) is rolled
      back, keeps its ``next_run_date`` and is reported in ``failures``;
      the other templates still run.
    - Entries whose type requires approval are created PENDING_APPROVAL
      instead of POSTED.
    - Due templates are locked (``SELECT ... FOR UPDATE``) so two concurrent
      runs cannot both generate the same period.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from journal_kernel.domain.clock import Clock, SystemClock
from journal_kernel.domain.dtos import EntrySpec, LineSpec
from journal_kernel.domain.formula import FormulaEvaluator
from journal_kernel.domain.lifecycle import EntryOrigin
from journal_kernel.domain.recurrence import advance_run_date, is_due
from journal_kernel.domain.scope import LedgerScope
from journal_kernel.exceptions import JournalKernelError
from journal_kernel.logging_config import get_logger
from journal_kernel.models.journal import JournalEntry
from journal_kernel.models.template import JournalEntryTemplate
from journal_kernel.services.journal_service import JournalService

logger = get_logger("batch.recurring")


@dataclass(frozen=True)
class RecurringFailure:
    template_id: UUID
    template_name: str
    run_date: date
    code: str
    message: str


@dataclass(frozen=True)
class RecurringRunResult:
    entries: tuple[JournalEntry, ...]
    failures: tuple[RecurringFailure, ...] = ()

    @property
    def processed(self) -> int:
        return len(self.entries) + len(self.failures)


class RecurringScheduler:
    """Generates entries from due recurring templates."""

    def __init__(self, session: Session, journal: JournalService, clock: Clock | None = None):
        self._session = session
        self._journal = journal
        self._clock = clock or SystemClock()

    def due_templates(self, scope: LedgerScope, as_of: date) -> list[JournalEntryTemplate]:
        candidates = self._session.execute(
            select(JournalEntryTemplate)
            .where(
                JournalEntryTemplate.tenant_id == scope.tenant_id,
                JournalEntryTemplate.company_id == scope.company_id,
                JournalEntryTemplate.is_active.is_(True),
                JournalEntryTemplate.is_recurring.is_(True),
                JournalEntryTemplate.next_run_date.is_not(None),
                JournalEntryTemplate.next_run_date <= as_of,
            )
            .order_by(JournalEntryTemplate.next_run_date, JournalEntryTemplate.name)
            .with_for_update()
        ).scalars()
        return [t for t in candidates if is_due(t.next_run_date, t.end_date, as_of)]

    def process_recurring(
        self,
        scope: LedgerScope,
        as_of: date | None = None,
        *,
        actor_id: str,
    ) -> RecurringRunResult:
        as_of = as_of or self._clock.today()
        entries: list[JournalEntry] = []
        failures: list[RecurringFailure] = []

        templates = self.due_templates(scope, as_of)
        logger.info(
            "recurring_run_started",
            extra={**scope.log_fields(), "as_of": as_of, "due_templates": len(templates)},
        )

        for template in templates:
            template_id = template.id
            template_name = template.name
            run_date = template.next_run_date

            savepoint = self._session.begin_nested()
            try:
                entry = self._materialize(scope, template, run_date, actor_id)
                savepoint.commit()
            except JournalKernelError as exc:
                savepoint.rollback()
                failures.append(RecurringFailure(
                    template_id=template_id,
                    template_name=template_name,
                    run_date=run_date,
                    code=exc.code,
                    message=exc.message,
                ))
                logger.warning(
                    "recurring_template_failed",
                    extra={
                        **scope.log_fields(),
                        "template_id": str(template_id),
                        "run_date": run_date,
                        "error_code": exc.code,
                        "error": exc.message,
                    },
                )
                continue

            entries.append(entry)
            logger.info(
                "recurring_entry_generated",
                extra={
                    **scope.log_fields(),
                    "template_id": str(template_id),
                    "entry_id": str(entry.id),
                    "reference": entry.reference,
                    "run_date": run_date,
                    "next_run_date": template.next_run_date,
                },
            )

        logger.info(
            "recurring_run_completed",
            extra={
                **scope.log_fields(),
                "generated": len(entries),
                "failed": len(failures),
            },
        )
        return RecurringRunResult(entries=tuple(entries), failures=tuple(failures))

    def _materialize(
        self,
        scope: LedgerScope,
        template: JournalEntryTemplate,
        run_date: date,
        actor_id: str,
    ) -> JournalEntry:
        evaluator = FormulaEvaluator.for_run_date(run_date)
        lines = tuple(
            LineSpec(
                account_id=line.account_id,
                debit=evaluator.evaluate(line.debit_formula),
                credit=evaluator.evaluate(line.credit_formula),
                memo=line.memo,
                department=line.department,
                project=line.project,
                location=line.location,
            )
            for line in template.lines
        )
        reference = self._journal.references.derived(
            scope, "REC", f"{run_date:%Y%m%d}-{str(template.id)[:8]}",
        )
        spec = EntrySpec(
            entry_date=run_date,
            memo=f"Recurring entry from template: {template.name}",
            lines=lines,
            reference=reference,
            entry_type_id=template.entry_type_id,
        )
        entry = self._journal.create_entry(
            scope,
            spec,
            actor_id=actor_id,
            origin=EntryOrigin.RECURRING,
            post_immediately=True,
            template_id=template.id,
            comments=f"Generated from template {template.name}",
        )

        template.last_run_date = run_date
        template.next_run_date = advance_run_date(run_date, template.frequency)
        template.updated_by = actor_id
        self._session.flush()
        return entry
