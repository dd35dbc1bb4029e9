"""
Pytest fixtures for the journal engine test suite.

Provides:
- An in-memory SQLite database per test (tables created from the models,
  immutability listeners registered, SAVEPOINTs enabled)
- Deterministic clock, scopes and a small chart of accounts
- Wired services, selector and batch components
- Structured log capture

Environment Variables:
- JOURNAL_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of in-memory SQLite.  Tables are created and dropped per test.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import Session

from journal_batch.services import BatchProcessor, RecurringScheduler
from journal_kernel.db.base import Base
from journal_kernel.db.engine import build_engine
from journal_kernel.db.immutability import register_immutability_listeners
from journal_kernel.domain.clock import DeterministicClock
from journal_kernel.domain.dtos import EntrySpec, LineSpec
from journal_kernel.domain.scope import LedgerScope
from journal_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from journal_kernel.models.account import AccountType
from journal_kernel.selectors import JournalSelector
from journal_kernel.services import (
    AccountService,
    ApprovalService,
    EntryTypeService,
    JournalService,
    TemplateService,
)

import journal_kernel.models  # noqa: F401  (populates Base.metadata)


TEST_ACTOR_ID = "user-accountant"
TEST_APPROVER_ID = "user-controller"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture journal_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, journal_service):
            journal_service.create_entry(...)
            logs = captured_logs()
            assert any(r["message"] == "entry_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("journal_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def engine():
    """Fresh schema per test."""
    url = os.environ.get("JOURNAL_TEST_DATABASE_URL", "sqlite:///:memory:")
    engine = build_engine(url)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine) -> Session:
    session = Session(bind=engine, expire_on_commit=False)
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Clock, scope, actors
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """2024-01-15 12:00 UTC until advanced."""
    return DeterministicClock()


@pytest.fixture
def scope():
    return LedgerScope(tenant_id="tenant-a", company_id="company-1")


@pytest.fixture
def other_scope():
    """Same tenant, different company."""
    return LedgerScope(tenant_id="tenant-a", company_id="company-2")


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def approver_id():
    return TEST_APPROVER_ID


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def account_service(session):
    return AccountService(session)


@pytest.fixture
def entry_type_service(session):
    return EntryTypeService(session)


@pytest.fixture
def journal_service(session, deterministic_clock):
    return JournalService(session, deterministic_clock)


@pytest.fixture
def approval_service(session, journal_service, deterministic_clock):
    return ApprovalService(session, journal_service, deterministic_clock)


@pytest.fixture
def template_service(session, deterministic_clock):
    return TemplateService(session, deterministic_clock)


@pytest.fixture
def journal_selector(session):
    return JournalSelector(session)


@pytest.fixture
def batch_processor(session, journal_service, approval_service):
    return BatchProcessor(session, journal_service, approval_service)


@pytest.fixture
def recurring_scheduler(session, journal_service, deterministic_clock):
    return RecurringScheduler(session, journal_service, deterministic_clock)


# =============================================================================
# Chart of accounts
# =============================================================================


@pytest.fixture
def standard_accounts(account_service, scope, test_actor_id):
    """Cash, receivables, payables, equity, revenue and expense accounts."""
    specs = {
        "cash": ("1000", "Cash", AccountType.ASSET),
        "receivables": ("1200", "Accounts Receivable", AccountType.ASSET),
        "payables": ("2000", "Accounts Payable", AccountType.LIABILITY),
        "equity": ("3000", "Owner Equity", AccountType.EQUITY),
        "revenue": ("4000", "Sales Revenue", AccountType.REVENUE),
        "expense": ("5000", "Operating Expense", AccountType.EXPENSE),
    }
    return {
        key: account_service.create_account(
            scope, actor_id=test_actor_id, code=code, name=name, account_type=account_type,
        )
        for key, (code, name, account_type) in specs.items()
    }


@pytest.fixture
def make_spec(standard_accounts):
    """
    Build an EntrySpec debiting one account and crediting another.

    Usage::

        spec = make_spec(Decimal("100.00"))
        spec = make_spec(Decimal("100.00"), credit=Decimal("90.00"))
    """

    def _make(
        amount: Decimal = Decimal("100.00"),
        *,
        credit: Decimal | None = None,
        debit_account: str = "cash",
        credit_account: str = "revenue",
        memo: str = "Cash sale",
        entry_date: date = date(2024, 1, 15),
        **fields,
    ) -> EntrySpec:
        return EntrySpec(
            entry_date=entry_date,
            memo=memo,
            lines=(
                LineSpec(
                    account_id=standard_accounts[debit_account].id,
                    debit=amount,
                    memo="Debit line",
                ),
                LineSpec(
                    account_id=standard_accounts[credit_account].id,
                    credit=amount if credit is None else credit,
                    memo="Credit line",
                ),
            ),
            **fields,
        )

    return _make


@pytest.fixture
def posted_entry(journal_service, scope, make_spec, test_actor_id):
    """A POSTED 100.00 cash sale."""
    entry = journal_service.create_entry(scope, make_spec(), actor_id=test_actor_id)
    return journal_service.post_entry(scope, entry.id, actor_id=test_actor_id)
