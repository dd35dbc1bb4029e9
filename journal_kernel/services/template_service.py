"""
TemplateService -- reusable entry skeletons and recurrence schedules.

Responsibility:
    Creates templates (validating every formula up front), derives a
    template from an existing entry, and deactivates templates.  The
    recurring scheduler in ``journal_batch`` reads what this service writes.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from journal_kernel.domain.clock import Clock, SystemClock
from journal_kernel.domain.dtos import TemplateLineSpec, TemplateSpec
from journal_kernel.domain.formula import CENT, validate_formula
from journal_kernel.domain.recurrence import Frequency, parse_frequency
from journal_kernel.domain.scope import LedgerScope
from journal_kernel.exceptions import (
    AccountNotFoundError,
    EmptyEntryError,
    FormulaError,
    TemplateNotFoundError,
)
from journal_kernel.logging_config import get_logger
from journal_kernel.models.template import JournalEntryTemplate, JournalEntryTemplateLine
from journal_kernel.services.account_service import AccountService
from journal_kernel.services.entry_type_service import EntryTypeService
from journal_kernel.services.journal_service import JournalService

logger = get_logger("services.template")


def _literal(amount) -> str | None:
    """Formula text for a fixed amount; None for zero."""
    if not amount:
        return None
    return format(amount.quantize(CENT), "f")


class TemplateService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._accounts = AccountService(session)
        self._entry_types = EntryTypeService(session)

    def get_template(self, scope: LedgerScope, template_id: UUID) -> JournalEntryTemplate:
        template = self._session.execute(
            select(JournalEntryTemplate).where(
                JournalEntryTemplate.id == template_id,
                JournalEntryTemplate.tenant_id == scope.tenant_id,
                JournalEntryTemplate.company_id == scope.company_id,
            )
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        return template

    def create_template(
        self,
        scope: LedgerScope,
        spec: TemplateSpec,
        *,
        actor_id: str,
    ) -> JournalEntryTemplate:
        """Persist a template after checking its lines and formulas.

        Raises:
            EmptyEntryError: No lines.
            FormulaError: A formula falls outside the restricted grammar.
            AccountNotFoundError: A line account is not in scope.
            InvalidEntryTypeError: Unknown or inactive entry type.
        """
        if not spec.lines:
            raise EmptyEntryError(spec.name)
        for line in spec.lines:
            for formula in (line.debit_formula, line.credit_formula):
                issues = validate_formula(formula)
                if issues:
                    raise FormulaError(str(formula), issues[0].message)

        accounts = self._accounts.accounts_by_id(scope, (line.account_id for line in spec.lines))
        for line in spec.lines:
            if line.account_id not in accounts:
                raise AccountNotFoundError(str(line.account_id))
        if spec.entry_type_id is not None:
            self._entry_types.get_active(scope, spec.entry_type_id)

        frequency = parse_frequency(spec.frequency)
        next_run_date = spec.next_run_date
        if spec.is_recurring and next_run_date is None:
            next_run_date = self._clock.today()

        template = JournalEntryTemplate(
            tenant_id=scope.tenant_id,
            company_id=scope.company_id,
            name=spec.name,
            description=spec.description,
            entry_type_id=spec.entry_type_id,
            is_recurring=spec.is_recurring,
            frequency=frequency.value if frequency else None,
            next_run_date=next_run_date if spec.is_recurring else None,
            end_date=spec.end_date,
            created_by=actor_id,
            lines=[
                JournalEntryTemplateLine(
                    line_no=line_no,
                    account_id=line.account_id,
                    debit_formula=line.debit_formula,
                    credit_formula=line.credit_formula,
                    memo=line.memo,
                    department=line.department,
                    project=line.project,
                    location=line.location,
                )
                for line_no, line in enumerate(spec.lines, start=1)
            ],
        )
        self._session.add(template)
        self._session.flush()

        logger.info(
            "template_created",
            extra={
                **scope.log_fields(),
                "template_id": str(template.id),
                "template_name": spec.name,
                "is_recurring": spec.is_recurring,
                "frequency": template.frequency,
                "next_run_date": next_run_date,
            },
        )
        return template

    def create_from_entry(
        self,
        scope: LedgerScope,
        entry_id: UUID,
        *,
        actor_id: str,
        name: str,
        description: str | None = None,
        is_recurring: bool = False,
        frequency: Frequency | str | None = None,
        next_run_date: date | None = None,
        end_date: date | None = None,
    ) -> JournalEntryTemplate:
        """Template whose lines repeat ``entry_id``'s amounts as literals."""
        entry = JournalService(self._session, self._clock).get_entry(scope, entry_id)
        spec = TemplateSpec(
            name=name,
            description=description if description is not None else entry.memo,
            entry_type_id=entry.entry_type_id,
            is_recurring=is_recurring,
            frequency=parse_frequency(frequency),
            next_run_date=next_run_date,
            end_date=end_date,
            lines=tuple(
                TemplateLineSpec(
                    account_id=line.account_id,
                    debit_formula=_literal(line.debit),
                    credit_formula=_literal(line.credit),
                    memo=line.memo,
                    department=line.department,
                    project=line.project,
                    location=line.location,
                )
                for line in entry.lines
            ),
        )
        return self.create_template(scope, spec, actor_id=actor_id)

    def deactivate(self, scope: LedgerScope, template_id: UUID, *, actor_id: str) -> JournalEntryTemplate:
        template = self.get_template(scope, template_id)
        template.is_active = False
        template.updated_by = actor_id
        self._session.flush()
        logger.info(
            "template_deactivated",
            extra={**scope.log_fields(), "template_id": str(template_id)},
        )
        return template
