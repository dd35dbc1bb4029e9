"""
Entry type policy -- which accounts and what total an entry type allows.

Pure functions over an ``EntryTypeRules`` snapshot and a candidate line set.
Checked before any persistence: a violating entry is never written.

Rules:
    - allowed_account_ids empty      -> any account is allowed.
    - allowed_account_ids non-empty  -> every line's account must be in it.
    - max_amount set                 -> sum(debit + credit) over all lines
                                        must not exceed it.
The account rule is evaluated first.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from journal_kernel.exceptions import (
    AmountExceedsPolicyLimitError,
    InvalidAccountsForEntryTypeError,
)


class PolicyLine(Protocol):
    account_id: UUID
    debit: Decimal | None
    credit: Decimal | None


@dataclass(frozen=True)
class EntryTypeRules:
    """Immutable snapshot of an entry type's constraints."""

    name: str
    requires_approval: bool = False
    max_amount: Decimal | None = None
    allowed_account_ids: frozenset[UUID] = field(default_factory=frozenset)


@dataclass(frozen=True)
class PolicyCheck:
    """Outcome of evaluating the rules against a line set."""

    total: Decimal
    disallowed_account_ids: tuple[UUID, ...] = ()
    limit_exceeded: bool = False

    @property
    def passed(self) -> bool:
        return not self.disallowed_account_ids and not self.limit_exceeded


def line_total(lines: Iterable[PolicyLine]) -> Decimal:
    """Combined debit + credit over all lines."""
    return sum(
        ((line.debit or Decimal("0")) + (line.credit or Decimal("0")) for line in lines),
        Decimal("0"),
    )


def evaluate_entry_type_policy(
    rules: EntryTypeRules,
    lines: Iterable[PolicyLine],
) -> PolicyCheck:
    """Evaluate ``rules`` without raising."""
    lines = list(lines)
    disallowed: list[UUID] = []
    if rules.allowed_account_ids:
        for line in lines:
            if line.account_id not in rules.allowed_account_ids and line.account_id not in disallowed:
                disallowed.append(line.account_id)

    total = line_total(lines)
    exceeded = rules.max_amount is not None and total > rules.max_amount
    return PolicyCheck(
        total=total,
        disallowed_account_ids=tuple(disallowed),
        limit_exceeded=exceeded,
    )


def enforce_entry_type_policy(
    rules: EntryTypeRules,
    lines: Iterable[PolicyLine],
) -> PolicyCheck:
    """Evaluate ``rules`` and raise on the first violated rule.

    Raises:
        InvalidAccountsForEntryTypeError: A line uses a disallowed account.
        AmountExceedsPolicyLimitError: Combined amounts exceed max_amount.
    """
    check = evaluate_entry_type_policy(rules, lines)
    if check.disallowed_account_ids:
        raise InvalidAccountsForEntryTypeError(
            rules.name, [str(a) for a in check.disallowed_account_ids],
        )
    if check.limit_exceeded:
        raise AmountExceedsPolicyLimitError(rules.name, check.total, rules.max_amount)
    return check
