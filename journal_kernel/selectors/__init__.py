"""Selectors for the journal kernel (read side)."""

from journal_kernel.selectors.journal_selector import (
    AccountBalance,
    Anomaly,
    ApprovalView,
    AuditView,
    EntryView,
    JournalMetrics,
    JournalSelector,
    LineView,
    ValidationReport,
)

__all__ = [
    "AccountBalance",
    "Anomaly",
    "ApprovalView",
    "AuditView",
    "EntryView",
    "JournalMetrics",
    "JournalSelector",
    "LineView",
    "ValidationReport",
]
