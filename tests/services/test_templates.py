"""
TemplateService tests.

Tests cover:
- Formula validation before anything is written
- Account and entry type checks
- Recurrence defaults (next run date)
- Deriving a template from an existing entry
- Deactivation and lookup
"""

from datetime import date
from uuid import uuid4

import pytest

from journal_kernel.domain.dtos import TemplateLineSpec, TemplateSpec
from journal_kernel.domain.recurrence import Frequency
from journal_kernel.exceptions import (
    AccountNotFoundError,
    EmptyEntryError,
    FormulaError,
    InvalidEntryTypeError,
    TemplateNotFoundError,
)


@pytest.fixture
def rent_lines(standard_accounts):
    return (
        TemplateLineSpec(
            account_id=standard_accounts["expense"].id,
            debit_formula="1500 * days_in_month / 30",
            memo="Rent",
            department="ops",
        ),
        TemplateLineSpec(
            account_id=standard_accounts["cash"].id,
            credit_formula="1500 * days_in_month / 30",
        ),
    )


class TestCreateTemplate:
    def test_persists_lines_in_order(self, template_service, scope, rent_lines, test_actor_id):
        template = template_service.create_template(
            scope,
            TemplateSpec(name="Office rent", lines=rent_lines, description="Monthly rent"),
            actor_id=test_actor_id,
        )

        assert template.name == "Office rent"
        assert [line.line_no for line in template.lines] == [1, 2]
        assert template.lines[0].debit_formula == "1500 * days_in_month / 30"
        assert template.lines[0].department == "ops"
        assert template.lines[1].debit_formula is None
        assert template.is_active
        assert not template.is_recurring
        assert template.next_run_date is None

    def test_recurring_defaults_next_run_to_today(self, template_service, scope, rent_lines, test_actor_id):
        template = template_service.create_template(
            scope,
            TemplateSpec(
                name="Office rent",
                lines=rent_lines,
                is_recurring=True,
                frequency=Frequency.MONTHLY,
            ),
            actor_id=test_actor_id,
        )
        assert template.frequency == "MONTHLY"
        assert template.next_run_date == date(2024, 1, 15)

    def test_explicit_next_run_date(self, template_service, scope, rent_lines, test_actor_id):
        template = template_service.create_template(
            scope,
            TemplateSpec(
                name="Office rent",
                lines=rent_lines,
                is_recurring=True,
                frequency=Frequency.MONTHLY,
                next_run_date=date(2024, 2, 1),
                end_date=date(2024, 12, 31),
            ),
            actor_id=test_actor_id,
        )
        assert template.next_run_date == date(2024, 2, 1)
        assert template.end_date == date(2024, 12, 31)

    def test_requires_lines(self, template_service, scope, test_actor_id):
        with pytest.raises(EmptyEntryError):
            template_service.create_template(
                scope, TemplateSpec(name="Empty", lines=()), actor_id=test_actor_id,
            )

    @pytest.mark.parametrize(
        "formula",
        [
            "__import__('os').system('true')",
            "amount ** 2",
            "open('x')",
            "1500 +",
        ],
    )
    def test_rejects_unsafe_formula(self, template_service, scope, standard_accounts, test_actor_id, formula):
        spec = TemplateSpec(
            name="Bad",
            lines=(TemplateLineSpec(account_id=standard_accounts["cash"].id, debit_formula=formula),),
        )
        with pytest.raises(FormulaError) as exc_info:
            template_service.create_template(scope, spec, actor_id=test_actor_id)
        assert exc_info.value.code == "INVALID_FORMULA"

    def test_formula_checked_before_accounts(self, template_service, scope, test_actor_id):
        spec = TemplateSpec(
            name="Bad",
            lines=(TemplateLineSpec(account_id=uuid4(), debit_formula="amount ** 2"),),
        )
        with pytest.raises(FormulaError):
            template_service.create_template(scope, spec, actor_id=test_actor_id)

    def test_unknown_account(self, template_service, scope, test_actor_id):
        spec = TemplateSpec(
            name="Bad",
            lines=(TemplateLineSpec(account_id=uuid4(), debit_formula="10"),),
        )
        with pytest.raises(AccountNotFoundError):
            template_service.create_template(scope, spec, actor_id=test_actor_id)

    def test_unknown_entry_type(self, template_service, scope, rent_lines, test_actor_id):
        with pytest.raises(InvalidEntryTypeError):
            template_service.create_template(
                scope,
                TemplateSpec(name="Rent", lines=rent_lines, entry_type_id=uuid4()),
                actor_id=test_actor_id,
            )


class TestCreateFromEntry:
    def test_amounts_become_literals(self, template_service, scope, posted_entry, test_actor_id):
        template = template_service.create_from_entry(
            scope,
            posted_entry.id,
            actor_id=test_actor_id,
            name="Weekly cash sale",
            is_recurring=True,
            frequency="weekly",
        )

        assert template.description == "Cash sale"
        assert template.frequency == "WEEKLY"
        assert template.next_run_date == date(2024, 1, 15)
        debit_line, credit_line = template.lines
        assert debit_line.debit_formula == "100.00"
        assert debit_line.credit_formula is None
        assert credit_line.credit_formula == "100.00"
        assert credit_line.debit_formula is None
        assert debit_line.memo == "Debit line"

    def test_unknown_entry(self, template_service, scope, standard_accounts, test_actor_id):
        from journal_kernel.exceptions import EntryNotFoundError

        with pytest.raises(EntryNotFoundError):
            template_service.create_from_entry(scope, uuid4(), actor_id=test_actor_id, name="x")


class TestTemplateLookup:
    def test_deactivate(self, template_service, scope, rent_lines, test_actor_id):
        template = template_service.create_template(
            scope, TemplateSpec(name="Rent", lines=rent_lines), actor_id=test_actor_id,
        )
        template_service.deactivate(scope, template.id, actor_id=test_actor_id)
        assert not template_service.get_template(scope, template.id).is_active

    def test_other_scope_cannot_see_template(self, template_service, scope, other_scope, rent_lines, test_actor_id):
        template = template_service.create_template(
            scope, TemplateSpec(name="Rent", lines=rent_lines), actor_id=test_actor_id,
        )
        with pytest.raises(TemplateNotFoundError):
            template_service.get_template(other_scope, template.id)
