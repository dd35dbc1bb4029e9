"""
Balance validator -- pure debit/credit equality check.

Used as a pre-commit guard (every transition to POSTED) and as a read-time
annotation (selectors flag unbalanced drafts for monitoring).  Lines are any
objects exposing ``debit`` and ``credit``: LineSpec DTOs and JournalLine rows
both qualify.  ``None`` amounts count as zero.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

BALANCE_TOLERANCE = Decimal("0.01")

ZERO = Decimal("0")


class HasAmounts(Protocol):
    debit: Decimal | None
    credit: Decimal | None


@dataclass(frozen=True)
class BalanceCheck:
    """Totals for a line set and whether they balance."""

    total_debit: Decimal
    total_credit: Decimal
    tolerance: Decimal = BALANCE_TOLERANCE

    @property
    def difference(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) < self.tolerance


def _amount(value: Decimal | int | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def check_balance(
    lines: Iterable[HasAmounts],
    tolerance: Decimal = BALANCE_TOLERANCE,
) -> BalanceCheck:
    """Sum debits and credits over ``lines``.

    An empty line set yields zero totals and is balanced; requiring at least
    one line is the lifecycle's concern, not this function's.
    """
    total_debit = ZERO
    total_credit = ZERO
    for line in lines:
        total_debit += _amount(line.debit)
        total_credit += _amount(line.credit)
    return BalanceCheck(
        total_debit=total_debit,
        total_credit=total_credit,
        tolerance=tolerance,
    )
