"""ORM models for the journal kernel."""

from journal_kernel.models.account import Account, AccountType
from journal_kernel.models.approval import JournalEntryApproval
from journal_kernel.models.audit import AuditAction, JournalEntryAudit
from journal_kernel.models.entry_type import JournalEntryType, JournalEntryTypeAccount
from journal_kernel.models.journal import JournalEntry, JournalLine
from journal_kernel.models.reference_counter import ReferenceCounter
from journal_kernel.models.template import JournalEntryTemplate, JournalEntryTemplateLine

__all__ = [
    "Account",
    "AccountType",
    "AuditAction",
    "JournalEntry",
    "JournalEntryApproval",
    "JournalEntryAudit",
    "JournalEntryTemplate",
    "JournalEntryTemplateLine",
    "JournalEntryType",
    "JournalEntryTypeAccount",
    "JournalLine",
    "ReferenceCounter",
]
