"""Services for the journal kernel (write side)."""

from journal_kernel.services.account_service import AccountService
from journal_kernel.services.approval_service import ApprovalOutcome, ApprovalService
from journal_kernel.services.audit_service import AuditTrailRecorder, snapshot
from journal_kernel.services.entry_type_service import EntryTypeService
from journal_kernel.services.journal_service import JournalService, ReversalResult
from journal_kernel.services.notification_service import NotificationDispatcher
from journal_kernel.services.reference_service import ReferenceGenerator
from journal_kernel.services.template_service import TemplateService

__all__ = [
    "AccountService",
    "ApprovalOutcome",
    "ApprovalService",
    "AuditTrailRecorder",
    "EntryTypeService",
    "JournalService",
    "NotificationDispatcher",
    "ReferenceGenerator",
    "ReversalResult",
    "TemplateService",
    "snapshot",
]
