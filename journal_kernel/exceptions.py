"""
Typed exception hierarchy for the journal kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the HTTP layer, the batch processor, the recurring scheduler) must
decide what to do with a failure without parsing message strings. Every error
raised by the kernel therefore:

  1. Has its own class (catch by type, not by message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (ids, computed totals, limits)

    try:
        journal.post_entry(scope, entry_id, actor_id=actor)
    except UnbalancedEntryError as e:
        respond(400, e.to_dict())       # {"code": "UNBALANCED_ENTRY", ...}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    JournalKernelError (base)
    |
    +-- ValidationError                 rejected before any write; retry after fixing input
    |   +-- MissingFieldError
    |   +-- EmptyEntryError
    |   +-- InvalidAmountError
    |   +-- NegativeAmountError
    |   +-- InvalidAccountTypeError
    |   +-- UnbalancedEntryError
    |   +-- MissingApproversError
    |   +-- InvalidEntryTypeError
    |   +-- AccountInactiveError
    |   +-- AccountHierarchyCycleError
    |   +-- FormulaError
    |   +-- BatchError
    |       +-- BatchSizeExceededError
    |       +-- EmptyBatchError
    |
    +-- PolicyError                     entry-type rules; rejected before any write
    |   +-- InvalidAccountsForEntryTypeError
    |   +-- AmountExceedsPolicyLimitError
    |
    +-- StateConflictError              re-fetch current state before retrying
    |   +-- DuplicateReferenceError
    |   +-- InvalidStatusError
    |   |   +-- InvalidStatusForReversalError
    |   |   |   +-- InvalidStatusForAdjustmentError
    |   |   +-- InvalidStatusForVoidError
    |   +-- ApprovalRequiredError
    |   +-- ApprovalAlreadyProcessedError
    |   +-- ApproverMismatchError
    |
    +-- NotFoundError
    |   +-- EntryNotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- TemplateNotFoundError
    |   +-- AccountNotFoundError
    |
    +-- ImmutabilityViolationError      posted lines / audit rows touched
    |
    +-- ConfigurationError

Systemic failures (connection loss, transaction failure) are SQLAlchemy
exceptions. They are never wrapped and always abort the enclosing transaction.
"""

from decimal import Decimal
from typing import Any


class JournalKernelError(Exception):
    """Base exception for all journal kernel errors."""

    code: str = "JOURNAL_KERNEL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        """Structured context for the error (everything but the message)."""
        return {
            k: v for k, v in vars(self).items()
            if not k.startswith("_") and k != "message"
        }

    def to_dict(self) -> dict[str, Any]:
        """Structured error payload for the calling layer."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details(),
        }


# =============================================================================
# Validation
# =============================================================================


class ValidationError(JournalKernelError):
    """Malformed input or amounts that can never be accepted as given."""

    code: str = "VALIDATION_ERROR"


class MissingFieldError(ValidationError):
    """A required field was not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str, reference: str | None = None):
        self.field = field
        self.reference = reference
        super().__init__(f"Missing required field: {field}")


class EmptyEntryError(ValidationError):
    """Entry has no lines."""

    code: str = "EMPTY_ENTRY"

    def __init__(self, reference: str | None = None):
        self.reference = reference
        super().__init__("Entry must have at least one line")


class InvalidAmountError(ValidationError):
    """A line amount is NaN or infinite."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, line_no: int, debit: Decimal, credit: Decimal):
        self.line_no = line_no
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Line {line_no} has a non-finite amount (debit={debit}, credit={credit})"
        )


class NegativeAmountError(ValidationError):
    """A line carries a negative debit or credit."""

    code: str = "NEGATIVE_AMOUNT"

    def __init__(self, line_no: int, debit: Decimal, credit: Decimal):
        self.line_no = line_no
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Line {line_no} has a negative amount (debit={debit}, credit={credit})"
        )


class InvalidAccountTypeError(ValidationError):
    """Account type is not one of the five account classes."""

    code: str = "INVALID_ACCOUNT_TYPE"

    def __init__(self, account_type: str, allowed: tuple[str, ...]):
        self.account_type = account_type
        self.allowed = allowed
        super().__init__(
            f"Invalid account type {account_type!r}; expected one of {', '.join(allowed)}"
        )


class UnbalancedEntryError(ValidationError):
    """Total debits and credits differ by at least the balance tolerance."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, total_debit: Decimal, total_credit: Decimal, entry_id: str | None = None):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.difference = total_debit - total_credit
        self.entry_id = entry_id
        super().__init__(
            f"Entry is not balanced: debits {total_debit} != credits {total_credit}"
        )


class MissingApproversError(ValidationError):
    """An approval request named no approvers."""

    code: str = "MISSING_APPROVERS"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"At least one approver is required for entry {entry_id}")


class InvalidEntryTypeError(ValidationError):
    """Entry type does not exist in the scope or is inactive."""

    code: str = "INVALID_ENTRY_TYPE"

    def __init__(self, entry_type_id: str, reason: str = "not found"):
        self.entry_type_id = entry_type_id
        self.reason = reason
        super().__init__(f"Invalid entry type {entry_type_id}: {reason}")


class AccountInactiveError(ValidationError):
    """Account exists but is inactive."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, account_code: str | None = None):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account {account_code or account_id} is inactive")


class AccountHierarchyCycleError(ValidationError):
    """Setting the parent would create a cycle in the account tree."""

    code: str = "ACCOUNT_HIERARCHY_CYCLE"

    def __init__(self, account_id: str, parent_id: str):
        self.account_id = account_id
        self.parent_id = parent_id
        super().__init__(
            f"Account {parent_id} cannot be the parent of {account_id}: cycle detected"
        )


class FormulaError(ValidationError):
    """Template formula is outside the allowed grammar or cannot be evaluated."""

    code: str = "INVALID_FORMULA"

    def __init__(self, formula: str, reason: str):
        self.formula = formula
        self.reason = reason
        super().__init__(f"Invalid formula {formula!r}: {reason}")


class BatchError(ValidationError):
    """Base for batch request errors."""

    code: str = "BATCH_ERROR"


class BatchSizeExceededError(BatchError):
    """Too many items for the requested batch operation."""

    code: str = "BATCH_SIZE_EXCEEDED"

    def __init__(self, operation: str, size: int, limit: int):
        self.operation = operation
        self.size = size
        self.limit = limit
        super().__init__(
            f"Batch {operation} accepts at most {limit} items, got {size}"
        )


class EmptyBatchError(BatchError):
    """Batch request carries no items."""

    code: str = "EMPTY_BATCH"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Batch {operation} requires at least one item")


# =============================================================================
# Policy
# =============================================================================


class PolicyError(JournalKernelError):
    """Entry violates the rules of its entry type."""

    code: str = "POLICY_ERROR"


class InvalidAccountsForEntryTypeError(PolicyError):
    """Lines reference accounts outside the entry type's allowed set."""

    code: str = "INVALID_ACCOUNTS_FOR_ENTRY_TYPE"

    def __init__(self, entry_type: str, account_ids: list[str]):
        self.entry_type = entry_type
        self.account_ids = account_ids
        super().__init__(
            f"Accounts not allowed for entry type {entry_type}: {', '.join(account_ids)}"
        )


class AmountExceedsPolicyLimitError(PolicyError):
    """Combined line amounts exceed the entry type's maximum."""

    code: str = "AMOUNT_EXCEEDS_POLICY_LIMIT"

    def __init__(self, entry_type: str, total: Decimal, limit: Decimal):
        self.entry_type = entry_type
        self.total = total
        self.limit = limit
        super().__init__(
            f"Entry total {total} exceeds the {entry_type} limit of {limit}"
        )


# =============================================================================
# State conflicts
# =============================================================================


class StateConflictError(JournalKernelError):
    """Operation is not legal for the current persisted state."""

    code: str = "STATE_CONFLICT"


class DuplicateReferenceError(StateConflictError):
    """Reference already exists in the tenant/company scope."""

    code: str = "DUPLICATE_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Reference already exists: {reference}")


class InvalidStatusError(StateConflictError):
    """Entry status does not allow the requested transition."""

    code: str = "INVALID_STATUS"

    def __init__(self, entry_id: str, current_status: str, operation: str):
        self.entry_id = entry_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} entry {entry_id} in status {current_status}"
        )


class InvalidStatusForReversalError(InvalidStatusError):
    """Only POSTED entries can be reversed."""

    code: str = "INVALID_STATUS_FOR_REVERSAL"

    def __init__(self, entry_id: str, current_status: str, operation: str = "reverse"):
        super().__init__(entry_id, current_status, operation)


class InvalidStatusForAdjustmentError(InvalidStatusForReversalError):
    """Only POSTED entries can be adjusted."""

    code: str = "INVALID_STATUS_FOR_ADJUSTMENT"

    def __init__(self, entry_id: str, current_status: str):
        super().__init__(entry_id, current_status, "adjust")


class InvalidStatusForVoidError(InvalidStatusError):
    """Only POSTED entries can be voided."""

    code: str = "INVALID_STATUS_FOR_VOID"

    def __init__(self, entry_id: str, current_status: str):
        super().__init__(entry_id, current_status, "void")


class ApprovalRequiredError(StateConflictError):
    """Entry type requires approval; direct posting is not allowed."""

    code: str = "APPROVAL_REQUIRED"

    def __init__(self, entry_id: str, entry_type: str):
        self.entry_id = entry_id
        self.entry_type = entry_type
        super().__init__(
            f"Entry {entry_id} of type {entry_type} must go through approval"
        )


class ApprovalAlreadyProcessedError(StateConflictError):
    """Approval record is no longer PENDING."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} has already been processed ({status})")


class ApproverMismatchError(StateConflictError):
    """Actor is not the approver designated on the approval record."""

    code: str = "APPROVER_MISMATCH"

    def __init__(self, approval_id: str, approver_id: str, actor_id: str):
        self.approval_id = approval_id
        self.approver_id = approver_id
        self.actor_id = actor_id
        super().__init__(
            f"Approval {approval_id} is assigned to {approver_id}, not {actor_id}"
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(JournalKernelError):
    """Requested record does not exist in the tenant/company scope."""

    code: str = "NOT_FOUND"


class EntryNotFoundError(NotFoundError):
    """Journal entry not found in scope."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class ApprovalNotFoundError(NotFoundError):
    """Approval record not found in scope."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval not found: {approval_id}")


class TemplateNotFoundError(NotFoundError):
    """Journal entry template not found in scope."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class AccountNotFoundError(NotFoundError):
    """Account not found in scope."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


# =============================================================================
# Integrity / configuration
# =============================================================================


class ImmutabilityViolationError(JournalKernelError):
    """Attempt to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class ConfigurationError(JournalKernelError):
    """Engine settings are missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, reason: str):
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid setting {setting}: {reason}")
