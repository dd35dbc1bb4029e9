"""
RecurringScheduler tests.

Tests cover:
- Due template selection (active, recurring, next run date, end date, scope)
- Formula evaluation against the run date's period variables
- Generated entry shape: POSTED, origin RECURRING, REC- reference
- Schedule advance, one run per template per call
- Failing templates: rolled back, not advanced, reported
- Approval-gated entry types produce PENDING_APPROVAL entries
"""

from datetime import date
from decimal import Decimal

import pytest

from journal_kernel.domain.dtos import TemplateLineSpec, TemplateSpec
from journal_kernel.domain.lifecycle import EntryOrigin, JournalEntryStatus
from journal_kernel.domain.recurrence import Frequency
from journal_kernel.models.journal import JournalEntry


@pytest.fixture
def make_template(template_service, scope, standard_accounts, test_actor_id):
    def _make(
        name="Office rent",
        debit="1500 * days_in_month / 31",
        credit="1500 * days_in_month / 31",
        **fields,
    ):
        fields.setdefault("is_recurring", True)
        fields.setdefault("frequency", Frequency.MONTHLY)
        fields.setdefault("next_run_date", date(2024, 1, 15))
        spec = TemplateSpec(
            name=name,
            lines=(
                TemplateLineSpec(
                    account_id=standard_accounts["expense"].id,
                    debit_formula=debit,
                    memo="Rent expense",
                    department="ops",
                ),
                TemplateLineSpec(account_id=standard_accounts["cash"].id, credit_formula=credit),
            ),
            **fields,
        )
        return template_service.create_template(scope, spec, actor_id=test_actor_id)

    return _make


class TestProcessRecurring:
    def test_generates_posted_entry(self, recurring_scheduler, scope, make_template, test_actor_id):
        template = make_template()

        result = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id)

        assert result.processed == 1
        assert result.failures == ()
        (entry,) = result.entries
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.posted_by == test_actor_id
        assert entry.origin == EntryOrigin.RECURRING
        assert entry.template_id == template.id
        assert entry.entry_date == date(2024, 1, 15)
        assert entry.reference == f"REC-20240115-{str(template.id)[:8]}"
        assert entry.memo == "Recurring entry from template: Office rent"
        assert entry.lines[0].debit == Decimal("1500.00")
        assert entry.lines[0].department == "ops"
        assert entry.lines[1].credit == Decimal("1500.00")

    def test_advances_schedule(self, recurring_scheduler, scope, make_template, test_actor_id):
        template = make_template()
        recurring_scheduler.process_recurring(scope, actor_id=test_actor_id)

        assert template.last_run_date == date(2024, 1, 15)
        assert template.next_run_date == date(2024, 2, 15)

        again = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id)
        assert again.processed == 0

    def test_one_run_per_call_when_behind(self, recurring_scheduler, scope, make_template, test_actor_id):
        template = make_template()

        first = recurring_scheduler.process_recurring(scope, date(2024, 3, 20), actor_id=test_actor_id)
        assert [e.entry_date for e in first.entries] == [date(2024, 1, 15)]

        second = recurring_scheduler.process_recurring(scope, date(2024, 3, 20), actor_id=test_actor_id)
        (entry,) = second.entries
        assert entry.entry_date == date(2024, 2, 15)
        # February 2024 has 29 days: 1500 * 29 / 31
        assert entry.lines[0].debit == Decimal("1403.23")
        assert template.next_run_date == date(2024, 3, 15)

    def test_period_variables(self, recurring_scheduler, scope, make_template, test_actor_id):
        make_template(debit="100 * quarter + day", credit="100 * quarter + day")
        (entry,) = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id).entries
        assert entry.total_debit == Decimal("115.00")


class TestDueTemplates:
    def test_selection_rules(self, recurring_scheduler, scope, make_template, template_service, test_actor_id):
        due = make_template(name="Due")
        make_template(name="Future", next_run_date=date(2024, 1, 16))
        make_template(name="Ended", next_run_date=date(2024, 1, 1), end_date=date(2024, 1, 14))
        make_template(name="One-off", is_recurring=False)
        inactive = make_template(name="Paused")
        template_service.deactivate(scope, inactive.id, actor_id=test_actor_id)

        assert [t.id for t in recurring_scheduler.due_templates(scope, date(2024, 1, 15))] == [due.id]

    def test_other_company_not_processed(
        self, recurring_scheduler, other_scope, make_template, test_actor_id,
    ):
        make_template()
        result = recurring_scheduler.process_recurring(other_scope, actor_id=test_actor_id)
        assert result.processed == 0

    def test_end_date_is_inclusive(self, recurring_scheduler, scope, make_template):
        template = make_template(end_date=date(2024, 1, 15))
        assert [t.id for t in recurring_scheduler.due_templates(scope, date(2024, 1, 15))] == [template.id]

    def test_ordered_by_run_date_then_name(self, recurring_scheduler, scope, make_template):
        make_template(name="B rent")
        make_template(name="A rent")
        make_template(name="Z rent", next_run_date=date(2024, 1, 1))
        names = [t.name for t in recurring_scheduler.due_templates(scope, date(2024, 1, 15))]
        assert names == ["Z rent", "A rent", "B rent"]


class TestRecurringFailures:
    def test_failed_template_is_rolled_back_and_reported(
        self, session, recurring_scheduler, scope, make_template, test_actor_id, captured_logs,
    ):
        bad = make_template(name="Broken", debit="100", credit="90")
        good = make_template(name="Good")

        result = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id)

        assert [e.template_id for e in result.entries] == [good.id]
        (failure,) = result.failures
        assert failure.template_id == bad.id
        assert failure.template_name == "Broken"
        assert failure.run_date == date(2024, 1, 15)
        assert failure.code == "UNBALANCED_ENTRY"

        assert bad.next_run_date == date(2024, 1, 15)
        assert bad.last_run_date is None
        assert session.query(JournalEntry).filter_by(template_id=bad.id).count() == 0

        failed_logs = [r for r in captured_logs() if r["message"] == "recurring_template_failed"]
        assert failed_logs[0]["level"] == "WARNING"
        assert failed_logs[0]["error_code"] == "UNBALANCED_ENTRY"

    def test_division_by_zero_is_a_failure(self, recurring_scheduler, scope, make_template, test_actor_id):
        make_template(debit="100 / (month - 1)", credit="100")
        result = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id)
        assert result.entries == ()
        assert result.failures[0].code == "INVALID_FORMULA"

    def test_inactive_account_is_a_failure(
        self, account_service, recurring_scheduler, scope, make_template, standard_accounts, test_actor_id,
    ):
        make_template()
        account_service.set_active(scope, standard_accounts["expense"].id, False, actor_id=test_actor_id)
        result = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id)
        assert result.failures[0].code == "ACCOUNT_INACTIVE"


class TestRecurringApproval:
    def test_approval_gated_type_waits_for_approval(
        self, entry_type_service, recurring_scheduler, scope, make_template, test_actor_id,
    ):
        gated = entry_type_service.create_entry_type(
            scope, actor_id=test_actor_id, name="Accruals", requires_approval=True,
        )
        template = make_template(entry_type_id=gated.id)

        (entry,) = recurring_scheduler.process_recurring(scope, actor_id=test_actor_id).entries

        assert entry.status == JournalEntryStatus.PENDING_APPROVAL
        assert entry.posted_at is None
        assert len(entry.approvals) == 1
        assert template.next_run_date == date(2024, 2, 15)
