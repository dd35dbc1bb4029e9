"""
Approval domain types (``journal_kernel.domain.approval``).

Responsibility
--------------
Approval record lifecycle and the policy that decides when approvals post
the entry.

Invariants enforced
-------------------
* Only PENDING approvals can be decided; every other status is terminal.
* ``ApprovalPolicy`` is always chosen by the caller:

  - ``ANY_ONE``: the first approval posts the entry and cancels the
    remaining pending approvals.
  - ``ALL_REQUIRED``: the entry posts only when no approval on it is
    still pending.
"""

from enum import Enum


class ApprovalStatus(str, Enum):
    """Approval record lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    # Closed because the entry left PENDING_APPROVAL through a sibling decision.
    CANCELLED = "CANCELLED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


class ApprovalPolicy(str, Enum):
    """When approvals on a multi-approver request post the entry."""

    ANY_ONE = "any_one"
    ALL_REQUIRED = "all_required"


def should_post(policy: ApprovalPolicy, remaining_pending: int) -> bool:
    """Decide whether an approval posts the entry.

    ``remaining_pending`` counts sibling approvals still PENDING after the
    current one was approved.
    """
    if policy == ApprovalPolicy.ANY_ONE:
        return True
    return remaining_pending == 0
