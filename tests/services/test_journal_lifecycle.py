"""
JournalService lifecycle tests.

Tests cover:
- Create: DRAFT by default, validation order, entry type policy, references
- Update: DRAFT only, lines replaced, UPDATED audit
- Post: balance guard, approval-gated types, status checks
- Scope isolation: entries are invisible across companies
- Notifications: dispatched on create, failures swallowed
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from journal_kernel.domain.dtos import EntrySpec, LineSpec
from journal_kernel.domain.lifecycle import EntryOrigin, JournalEntryStatus
from journal_kernel.domain.ports import NotificationKind
from journal_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AmountExceedsPolicyLimitError,
    ApprovalRequiredError,
    DuplicateReferenceError,
    EmptyEntryError,
    EntryNotFoundError,
    InvalidAmountError,
    InvalidAccountsForEntryTypeError,
    InvalidEntryTypeError,
    InvalidStatusError,
    MissingFieldError,
    NegativeAmountError,
    UnbalancedEntryError,
)
from journal_kernel.models.audit import AuditAction, JournalEntryAudit
from journal_kernel.models.journal import JournalEntry
from journal_kernel.services import JournalService, NotificationDispatcher


class _RecordingPort:
    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)


class _FailingPort:
    def send(self, notification):
        raise ConnectionError("smtp down")


def _audit_actions(session, entry_id) -> list[str]:
    rows = session.query(JournalEntryAudit).filter(JournalEntryAudit.entry_id == entry_id).all()
    return sorted(row.action for row in rows)


# =========================================================================
# Create
# =========================================================================


class TestCreateEntry:
    def test_creates_draft_with_generated_reference(
        self, journal_service, scope, make_spec, test_actor_id,
    ):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)

        assert entry.status == JournalEntryStatus.DRAFT
        assert entry.origin == EntryOrigin.MANUAL
        assert entry.reference == "JE-20240115-0001"
        assert entry.tenant_id == "tenant-a"
        assert entry.company_id == "company-1"
        assert entry.created_by == test_actor_id
        assert [line.line_no for line in entry.lines] == [1, 2]
        assert entry.total_debit == Decimal("100.00")
        assert entry.is_balanced
        assert entry.posted_at is None

    def test_records_created_audit(self, session, journal_service, scope, make_spec, test_actor_id):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)

        audit = session.query(JournalEntryAudit).filter_by(entry_id=entry.id).one()
        assert audit.action == AuditAction.CREATED
        assert audit.actor_id == test_actor_id
        assert audit.before is None
        assert audit.after["reference"] == entry.reference
        assert audit.after["total_debit"] == "100.00"
        assert len(audit.after["lines"]) == 2

    def test_uses_supplied_reference(self, journal_service, scope, make_spec, test_actor_id):
        entry = journal_service.create_entry(
            scope, make_spec(reference="  INV-1001 "), actor_id=test_actor_id,
        )
        assert entry.reference == "INV-1001"

    def test_duplicate_reference_rejected(self, journal_service, scope, make_spec, test_actor_id):
        journal_service.create_entry(scope, make_spec(reference="INV-1001"), actor_id=test_actor_id)
        with pytest.raises(DuplicateReferenceError):
            journal_service.create_entry(scope, make_spec(reference="INV-1001"), actor_id=test_actor_id)

    def test_unbalanced_rejected_by_default(self, session, journal_service, scope, make_spec, test_actor_id):
        with pytest.raises(UnbalancedEntryError) as exc_info:
            journal_service.create_entry(
                scope, make_spec(Decimal("100.00"), credit=Decimal("90.00")), actor_id=test_actor_id,
            )
        assert exc_info.value.difference == Decimal("10.00")
        assert session.query(JournalEntry).count() == 0

    def test_unbalanced_draft_allowed_without_balance_check(
        self, journal_service, scope, make_spec, test_actor_id,
    ):
        entry = journal_service.create_entry(
            scope,
            make_spec(Decimal("100.00"), credit=Decimal("90.00")),
            actor_id=test_actor_id,
            validate_balance=False,
        )
        assert entry.status == JournalEntryStatus.DRAFT
        assert not entry.is_balanced

    def test_post_immediately(self, journal_service, scope, make_spec, test_actor_id, deterministic_clock):
        entry = journal_service.create_entry(
            scope, make_spec(), actor_id=test_actor_id, post_immediately=True,
        )
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.posted_by == test_actor_id
        assert entry.posted_at == deterministic_clock.now()

    def test_requires_approval_flag_creates_pending(
        self, journal_service, scope, make_spec, test_actor_id,
    ):
        entry = journal_service.create_entry(
            scope, make_spec(requires_approval=True), actor_id=test_actor_id,
        )
        assert entry.status == JournalEntryStatus.PENDING_APPROVAL
        assert len(entry.approvals) == 1
        assert entry.approvals[0].approver_id is None
        assert entry.approvals[0].is_pending


class TestLineValidation:
    def test_empty_lines(self, journal_service, scope, test_actor_id):
        spec = EntrySpec(entry_date=date(2024, 1, 15), memo="Nothing", lines=())
        with pytest.raises(EmptyEntryError):
            journal_service.create_entry(scope, spec, actor_id=test_actor_id)

    def test_negative_amount(self, journal_service, scope, standard_accounts, test_actor_id):
        spec = EntrySpec(
            entry_date=date(2024, 1, 15),
            memo="Negative",
            lines=(
                LineSpec(account_id=standard_accounts["cash"].id, debit=Decimal("-5")),
                LineSpec(account_id=standard_accounts["revenue"].id, credit=Decimal("-5")),
            ),
        )
        with pytest.raises(NegativeAmountError) as exc_info:
            journal_service.create_entry(scope, spec, actor_id=test_actor_id)
        assert exc_info.value.line_no == 1

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), "-Infinity", Decimal("NaN")])
    def test_non_finite_amount(self, session, journal_service, scope, standard_accounts, test_actor_id, bad):
        spec = EntrySpec(
            entry_date=date(2024, 1, 15),
            memo="Not a number",
            lines=(
                LineSpec(account_id=standard_accounts["cash"].id, debit=Decimal("5")),
                LineSpec(account_id=standard_accounts["revenue"].id, credit=bad),
            ),
        )
        with pytest.raises(InvalidAmountError) as exc_info:
            journal_service.create_entry(scope, spec, actor_id=test_actor_id)
        assert exc_info.value.line_no == 2
        assert exc_info.value.code == "INVALID_AMOUNT"
        assert session.query(JournalEntry).count() == 0

    def test_missing_entry_date(self, session, journal_service, scope, standard_accounts, test_actor_id):
        spec = EntrySpec.from_dict({
            "memo": "No date",
            "lines": [
                {"accountId": str(standard_accounts["cash"].id), "debit": "5"},
                {"accountId": str(standard_accounts["revenue"].id), "credit": "5"},
            ],
        })
        assert spec.entry_date is None

        with pytest.raises(MissingFieldError) as exc_info:
            journal_service.create_entry(scope, spec, actor_id=test_actor_id)
        assert exc_info.value.field == "entry_date"
        assert exc_info.value.to_dict()["code"] == "MISSING_FIELD"
        assert session.query(JournalEntry).count() == 0

    def test_update_draft_requires_date(self, journal_service, scope, make_spec, test_actor_id):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
        with pytest.raises(MissingFieldError):
            journal_service.update_draft(scope, entry.id, make_spec(entry_date=None), actor_id=test_actor_id)
        assert entry.entry_date == date(2024, 1, 15)

    def test_unknown_account(self, journal_service, scope, standard_accounts, test_actor_id):
        spec = EntrySpec(
            entry_date=date(2024, 1, 15),
            memo="Ghost account",
            lines=(
                LineSpec(account_id=standard_accounts["cash"].id, debit=Decimal("5")),
                LineSpec(account_id=uuid4(), credit=Decimal("5")),
            ),
        )
        with pytest.raises(AccountNotFoundError):
            journal_service.create_entry(scope, spec, actor_id=test_actor_id)

    def test_account_from_other_company(
        self, journal_service, other_scope, make_spec, test_actor_id,
    ):
        with pytest.raises(AccountNotFoundError):
            journal_service.create_entry(other_scope, make_spec(), actor_id=test_actor_id)

    def test_inactive_account(
        self, journal_service, account_service, scope, standard_accounts, make_spec, test_actor_id,
    ):
        account_service.set_active(scope, standard_accounts["revenue"].id, False, actor_id=test_actor_id)
        with pytest.raises(AccountInactiveError) as exc_info:
            journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
        assert exc_info.value.code == "ACCOUNT_INACTIVE"


class TestEntryTypes:
    def test_unknown_entry_type(self, journal_service, scope, make_spec, test_actor_id):
        with pytest.raises(InvalidEntryTypeError):
            journal_service.create_entry(scope, make_spec(entry_type_id=uuid4()), actor_id=test_actor_id)

    def test_inactive_entry_type(
        self, journal_service, entry_type_service, scope, make_spec, test_actor_id,
    ):
        entry_type = entry_type_service.create_entry_type(scope, actor_id=test_actor_id, name="Old")
        entry_type_service.deactivate(scope, entry_type.id, actor_id=test_actor_id)
        with pytest.raises(InvalidEntryTypeError) as exc_info:
            journal_service.create_entry(
                scope, make_spec(entry_type_id=entry_type.id), actor_id=test_actor_id,
            )
        assert exc_info.value.code == "INVALID_ENTRY_TYPE"

    def test_disallowed_account(
        self, journal_service, entry_type_service, scope, standard_accounts, make_spec, test_actor_id,
    ):
        entry_type = entry_type_service.create_entry_type(
            scope,
            actor_id=test_actor_id,
            name="Payables",
            allowed_account_ids=[standard_accounts["cash"].id, standard_accounts["payables"].id],
        )
        with pytest.raises(InvalidAccountsForEntryTypeError):
            journal_service.create_entry(
                scope, make_spec(entry_type_id=entry_type.id), actor_id=test_actor_id,
            )

    def test_amount_limit(self, journal_service, entry_type_service, scope, make_spec, test_actor_id):
        entry_type = entry_type_service.create_entry_type(
            scope, actor_id=test_actor_id, name="Petty cash", max_amount=Decimal("150.00"),
        )
        with pytest.raises(AmountExceedsPolicyLimitError):
            journal_service.create_entry(
                scope, make_spec(Decimal("100.00"), entry_type_id=entry_type.id), actor_id=test_actor_id,
            )

    def test_type_requiring_approval_creates_pending(
        self, journal_service, entry_type_service, scope, make_spec, test_actor_id,
    ):
        entry_type = entry_type_service.create_entry_type(
            scope, actor_id=test_actor_id, name="Accruals", requires_approval=True,
        )
        entry = journal_service.create_entry(
            scope, make_spec(entry_type_id=entry_type.id), actor_id=test_actor_id,
        )
        assert entry.status == JournalEntryStatus.PENDING_APPROVAL
        assert entry.entry_type_id == entry_type.id


# =========================================================================
# Update
# =========================================================================


class TestUpdateDraft:
    def test_replaces_lines(
        self, session, journal_service, scope, make_spec, standard_accounts, test_actor_id,
    ):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
        updated = journal_service.update_draft(
            scope,
            entry.id,
            make_spec(Decimal("250.00"), debit_account="receivables", memo="Invoice 7"),
            actor_id="user-editor",
        )

        assert updated.memo == "Invoice 7"
        assert updated.total_debit == Decimal("250.00")
        assert updated.lines[0].account_id == standard_accounts["receivables"].id
        assert [line.line_no for line in updated.lines] == [1, 2]
        assert updated.updated_by == "user-editor"

        audit = (
            session.query(JournalEntryAudit)
            .filter_by(entry_id=entry.id, action=AuditAction.UPDATED.value)
            .one()
        )
        assert audit.before["total_debit"] == "100.00"
        assert audit.after["total_debit"] == "250.00"

    def test_changes_reference(self, journal_service, scope, make_spec, test_actor_id):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
        updated = journal_service.update_draft(
            scope, entry.id, make_spec(reference="MANUAL-9"), actor_id=test_actor_id,
        )
        assert updated.reference == "MANUAL-9"

    def test_posted_entry_cannot_be_updated(self, journal_service, scope, posted_entry, make_spec, test_actor_id):
        with pytest.raises(InvalidStatusError) as exc_info:
            journal_service.update_draft(scope, posted_entry.id, make_spec(), actor_id=test_actor_id)
        assert exc_info.value.current_status == "POSTED"
        assert exc_info.value.operation == "update"


# =========================================================================
# Post
# =========================================================================


class TestPostEntry:
    def test_posts_draft(self, session, journal_service, scope, make_spec, test_actor_id, deterministic_clock):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
        posted = journal_service.post_entry(scope, entry.id, actor_id="user-poster")

        assert posted.status == JournalEntryStatus.POSTED
        assert posted.posted_by == "user-poster"
        assert posted.posted_at == deterministic_clock.now()
        assert _audit_actions(session, entry.id) == ["CREATED", "POSTED"]

    def test_unbalanced_draft_cannot_post(self, journal_service, scope, make_spec, test_actor_id):
        entry = journal_service.create_entry(
            scope,
            make_spec(Decimal("100.00"), credit=Decimal("99.00")),
            actor_id=test_actor_id,
            validate_balance=False,
        )
        with pytest.raises(UnbalancedEntryError):
            journal_service.post_entry(scope, entry.id, actor_id=test_actor_id)
        assert entry.status == JournalEntryStatus.DRAFT

    def test_within_tolerance_posts(self, journal_service, scope, make_spec, test_actor_id):
        entry = journal_service.create_entry(
            scope,
            make_spec(Decimal("100.00"), credit=Decimal("99.995")),
            actor_id=test_actor_id,
        )
        assert journal_service.post_entry(scope, entry.id, actor_id=test_actor_id).is_posted

    def test_already_posted(self, journal_service, scope, posted_entry, test_actor_id):
        with pytest.raises(InvalidStatusError):
            journal_service.post_entry(scope, posted_entry.id, actor_id=test_actor_id)

    def test_approval_gated_type_cannot_post_directly(
        self, journal_service, entry_type_service, scope, make_spec, test_actor_id,
    ):
        entry_type = entry_type_service.create_entry_type(
            scope, actor_id=test_actor_id, name="Manual adjustments",
        )
        entry = journal_service.create_entry(
            scope, make_spec(entry_type_id=entry_type.id), actor_id=test_actor_id,
        )
        entry_type.requires_approval = True
        with pytest.raises(ApprovalRequiredError):
            journal_service.post_entry(scope, entry.id, actor_id=test_actor_id)

    def test_unknown_entry(self, journal_service, scope, test_actor_id):
        with pytest.raises(EntryNotFoundError):
            journal_service.post_entry(scope, uuid4(), actor_id=test_actor_id)

    def test_entry_not_visible_from_other_company(
        self, journal_service, scope, other_scope, make_spec, test_actor_id,
    ):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
        with pytest.raises(EntryNotFoundError):
            journal_service.post_entry(other_scope, entry.id, actor_id=test_actor_id)


# =========================================================================
# Notifications and logging
# =========================================================================


class TestNotifications:
    def test_created_notification(self, session, scope, make_spec, test_actor_id, deterministic_clock):
        port = _RecordingPort()
        service = JournalService(
            session, deterministic_clock, notifications=NotificationDispatcher(port),
        )
        entry = service.create_entry(scope, make_spec(), actor_id=test_actor_id)

        assert len(port.sent) == 1
        notification = port.sent[0]
        assert notification.kind == NotificationKind.ENTRY_CREATED
        assert notification.entry_id == entry.id
        assert notification.scope == scope

    def test_failing_port_does_not_fail_create(
        self, session, scope, make_spec, test_actor_id, deterministic_clock, captured_logs,
    ):
        service = JournalService(
            session, deterministic_clock, notifications=NotificationDispatcher(_FailingPort()),
        )
        entry = service.create_entry(scope, make_spec(), actor_id=test_actor_id)

        assert entry.status == JournalEntryStatus.DRAFT
        failures = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert len(failures) == 1
        assert failures[0]["error_type"] == "ConnectionError"

    def test_entry_created_log(self, journal_service, scope, make_spec, test_actor_id, captured_logs):
        entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)

        records = [r for r in captured_logs() if r["message"] == "entry_created"]
        assert len(records) == 1
        assert records[0]["entry_id"] == str(entry.id)
        assert records[0]["tenant_id"] == "tenant-a"
        assert records[0]["company_id"] == "company-1"
        assert records[0]["status"] == "DRAFT"
