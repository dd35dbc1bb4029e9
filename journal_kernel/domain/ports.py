"""
Ports the journal engine calls out through.

The engine never reaches into another subsystem.  Two capability
interfaces are injected by the composition root:

    LinkedTransactionHandler
        Implemented by a subsystem that owns transactions linked to journal
        entries (``source_domain`` + ``source_id`` on the entry).  Reversal
        and void dispatch to the handler registered for the entry's domain.
        It runs inside the reversal's transaction; if it raises, the
        reversal rolls back.

    NotificationPort
        Delivers lifecycle notifications (email, chat, ...).  Always called
        through NotificationDispatcher, which logs and swallows failures.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from journal_kernel.domain.scope import LedgerScope


@dataclass(frozen=True)
class LinkedReversalOutcome:
    """What a linked subsystem did while a journal entry was reversed."""

    movements_reversed: int = 0
    stock_restored: Decimal = Decimal("0")


class LinkedTransactionHandler(Protocol):
    """Undo the side of a linked transaction owned by another subsystem."""

    def reverse_linked(
        self,
        scope: LedgerScope,
        source_id: str,
        *,
        reversal_entry_id: UUID,
        reason: str,
        actor_id: str,
    ) -> LinkedReversalOutcome:
        ...


class NotificationKind(str, Enum):
    ENTRY_CREATED = "entry_created"
    APPROVAL_REQUESTED = "approval_requested"
    ENTRY_APPROVED = "entry_approved"
    ENTRY_REJECTED = "entry_rejected"


@dataclass(frozen=True)
class JournalNotification:
    """A fire-and-forget lifecycle notification."""

    kind: NotificationKind
    scope: LedgerScope
    entry_id: UUID
    reference: str
    actor_id: str
    recipients: tuple[str, ...] = ()
    comments: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationPort(Protocol):
    def send(self, notification: JournalNotification) -> None:
        ...
