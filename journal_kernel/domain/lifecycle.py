"""
Journal entry lifecycle -- statuses, origins and the transition table.

Architecture position:
    Kernel > Domain -- pure value objects.  ZERO I/O.

State machine (see ENTRY_TRANSITIONS):

    DRAFT            -> PENDING_APPROVAL (request approval), POSTED (post)
    PENDING_APPROVAL -> POSTED (approve), DRAFT (reject)
    POSTED           -> REVERSED (reverse), VOIDED (void)

REVERSED and VOIDED are terminal.  Reversal, adjustment and void never edit
the original's lines; they write new POSTED entries.
"""

from enum import Enum


class JournalEntryStatus(str, Enum):
    """Lifecycle status of a journal entry."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    POSTED = "POSTED"
    REVERSED = "REVERSED"
    VOIDED = "VOIDED"


class EntryOrigin(str, Enum):
    """How an entry came to exist."""

    MANUAL = "MANUAL"
    BATCH = "BATCH"
    RECURRING = "RECURRING"
    REVERSAL = "REVERSAL"
    ADJUSTMENT = "ADJUSTMENT"
    VOID = "VOID"


ENTRY_TRANSITIONS: dict[JournalEntryStatus, frozenset[JournalEntryStatus]] = {
    JournalEntryStatus.DRAFT: frozenset({
        JournalEntryStatus.PENDING_APPROVAL,
        JournalEntryStatus.POSTED,
    }),
    JournalEntryStatus.PENDING_APPROVAL: frozenset({
        JournalEntryStatus.POSTED,
        JournalEntryStatus.DRAFT,
    }),
    JournalEntryStatus.POSTED: frozenset({
        JournalEntryStatus.REVERSED,
        JournalEntryStatus.VOIDED,
    }),
    JournalEntryStatus.REVERSED: frozenset(),
    JournalEntryStatus.VOIDED: frozenset(),
}

# Statuses whose lines must balance and can never change again.
FINALIZED_STATUSES: frozenset[JournalEntryStatus] = frozenset({
    JournalEntryStatus.POSTED,
    JournalEntryStatus.REVERSED,
    JournalEntryStatus.VOIDED,
})

TERMINAL_STATUSES: frozenset[JournalEntryStatus] = frozenset({
    JournalEntryStatus.REVERSED,
    JournalEntryStatus.VOIDED,
})


def can_transition(
    current: JournalEntryStatus | str,
    target: JournalEntryStatus | str,
) -> bool:
    """True if ``current -> target`` is a legal lifecycle transition."""
    return JournalEntryStatus(target) in ENTRY_TRANSITIONS[JournalEntryStatus(current)]


def is_finalized(status: JournalEntryStatus | str) -> bool:
    return JournalEntryStatus(status) in FINALIZED_STATUSES
