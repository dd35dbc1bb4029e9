"""
ORM-level immutability enforcement for finalized journal data.

===============================================================================
WHY THIS EXISTS
===============================================================================

A POSTED entry is the historical record.  Corrections are new entries
(reversal, adjustment, void) that leave a visible trail; the original's
lines are never edited.  These listeners catch modifications made through
SQLAlchemy before any SQL reaches the database:

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|----------------------------------------------------------
JournalEntry        | POSTED: only status -> REVERSED/VOIDED may change
                    | REVERSED / VOIDED: nothing may change
                    | POSTED / REVERSED / VOIDED: cannot be deleted
JournalLine         | No update or delete once the parent is POSTED/REVERSED/VOIDED
JournalEntryAudit   | Never updated, never deleted

updated_at / updated_by are actor metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from journal_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to tamper on purpose call unregister_immutability_listeners().
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from journal_kernel.domain.lifecycle import (
    FINALIZED_STATUSES,
    JournalEntryStatus,
    TERMINAL_STATUSES,
)
from journal_kernel.exceptions import ImmutabilityViolationError
from journal_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_FIELDS = frozenset({"updated_at", "updated_by"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_status(target) -> JournalEntryStatus | None:
    """Status as it was before this flush (None for a pending insert)."""
    history = get_history(target, "status")
    if history.deleted:
        return JournalEntryStatus(history.deleted[0])
    if history.unchanged:
        return JournalEntryStatus(history.unchanged[0])
    return None


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Allow DRAFT/PENDING edits and the POSTED -> REVERSED/VOIDED status flip;
    block every other change to a finalized entry.
    """
    previous = _previous_status(target)
    if previous not in FINALIZED_STATUSES:
        return

    for attr in inspect(target).attrs:
        if attr.key in _METADATA_FIELDS or not attr.history.has_changes():
            continue
        if (
            attr.key == "status"
            and previous == JournalEntryStatus.POSTED
            and JournalEntryStatus(target.status) in TERMINAL_STATUSES
        ):
            continue
        _block(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot modify field '{attr.key}' on {previous.value} journal entry",
            field=attr.key,
        )


def _check_journal_entry_delete(mapper, connection, target):
    if JournalEntryStatus(target.status) in FINALIZED_STATUSES:
        _block(
            "JournalEntry",
            target.id,
            "DELETE",
            f"{JournalEntryStatus(target.status).value} journal entries cannot be deleted",
        )


def _parent_is_finalized(line) -> bool:
    entry = line.entry
    if entry is None:
        return False
    previous = _previous_status(entry)
    return previous in FINALIZED_STATUSES or JournalEntryStatus(entry.status) in FINALIZED_STATUSES


def _check_journal_line_immutability(mapper, connection, target):
    if _parent_is_finalized(target):
        _block(
            "JournalLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after the entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if _parent_is_finalized(target):
        _block(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after the entry is posted",
        )


def _check_audit_immutability(mapper, connection, target):
    _block(
        "JournalEntryAudit",
        target.id,
        "UPDATE",
        "Audit records are append-only",
    )


def _check_audit_delete(mapper, connection, target):
    _block(
        "JournalEntryAudit",
        target.id,
        "DELETE",
        "Audit records cannot be deleted",
    )


def _listeners():
    from journal_kernel.models.audit import JournalEntryAudit
    from journal_kernel.models.journal import JournalEntry, JournalLine

    return (
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (JournalEntryAudit, "before_update", _check_audit_immutability),
        (JournalEntryAudit, "before_delete", _check_audit_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, event_name, listener in _listeners():
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  Tests only."""
    for target, event_name, listener in _listeners():
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
