"""Tests for the structured logging system (journal_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from journal_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "journal_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("entry_posted", extra={"line_count": 2, "status": "POSTED"})

        record = _parse_log(stream)
        assert record["line_count"] == 2
        assert record["status"] == "POSTED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(correlation_id="abc-123", tenant_id="tenant-a", company_id="company-1")
        logger.info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["tenant_id"] == "tenant-a"
        assert record["company_id"] == "company-1"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(actor_id="from-context")
        get_logger("test").info("msg", extra={"actor_id": "from-extra"})

        assert _parse_log(stream)["actor_id"] == "from-context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "traceback" in record

    def test_kernel_exception_fields_extracted(self):
        """Kernel exceptions carry a code and structured attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from journal_kernel.exceptions import UnbalancedEntryError

        try:
            raise UnbalancedEntryError(Decimal("100.00"), Decimal("90.00"), entry_id="e-1")
        except UnbalancedEntryError:
            logger.error("posting_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "UNBALANCED_ENTRY"
        assert record["exc_type"] == "UnbalancedEntryError"
        assert record["exc_total_debit"] == "100.00"
        assert record["exc_total_credit"] == "90.00"
        assert record["exc_difference"] == "10.00"
        assert record["exc_entry_id"] == "e-1"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "tenant_id" not in record

    def test_uuid_decimal_and_date_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "with_values",
            extra={"entry_id": uid, "amount": Decimal("12.50"), "run_date": date(2024, 1, 15)},
        )

        record = _parse_log(stream)
        assert record["entry_id"] == str(uid)
        assert record["amount"] == "12.50"
        assert record["run_date"] == "2024-01-15"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", batch_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "batch_id": "y"}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(event_id="nope")

    def test_none_values_ignored(self):
        LogContext.set(correlation_id="x", entry_id=None)
        assert LogContext.get_all() == {"correlation_id": "x"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(tenant_id="outer")
        with LogContext.bind(tenant_id="inner"):
            assert LogContext.get_all()["tenant_id"] == "inner"
        assert LogContext.get_all()["tenant_id"] == "outer"

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "batch_id" not in LogContext.get_all()
        batch_id = uuid4()
        with LogContext.bind(batch_id=batch_id):
            assert LogContext.get_all()["batch_id"] == str(batch_id)
        assert "batch_id" not in LogContext.get_all()

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            tenant_id="t",
            company_id="co",
            actor_id="a",
            entry_id="e",
            batch_id="b",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["company_id"] == "co"
        assert ctx["batch_id"] == "b"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        root = logging.getLogger("journal_kernel")
        assert h1 in root.handlers
        assert h2 not in root.handlers

    def test_string_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("test").debug("visible")
        assert _parse_log(stream)["message"] == "visible"

    def test_get_logger_returns_child(self):
        logger = get_logger("services.journal")
        assert logger.name == "journal_kernel.services.journal"

    def test_logger_hierarchy(self):
        """Child loggers inherit the journal_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("batch.recurring")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "journal_kernel.batch.recurring"
