"""
Recurrence arithmetic for journal entry templates.

Pure functions, ZERO I/O.  The scheduler calls ``advance_run_date`` after a
template run to move ``next_run_date`` forward by one period.

Month-based frequencies clamp to the last day of the target month:
2024-01-31 + MONTHLY is 2024-02-29, and 2024-02-29 + YEARLY is 2025-02-28.
Anything that is not a recognised frequency advances by one day.
"""

import calendar
from datetime import date, timedelta
from enum import Enum


class Frequency(str, Enum):
    """Template recurrence frequency."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


_MONTH_STEPS: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def add_months(value: date, months: int) -> date:
    """Shift ``value`` by whole months, clamping the day to the month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_frequency(value: str | Frequency | None) -> Frequency | None:
    """Map a stored frequency string to the enum; None if unrecognised."""
    if value is None:
        return None
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).strip().upper())
    except ValueError:
        return None


def advance_run_date(run_date: date, frequency: str | Frequency | None) -> date:
    """Next run date after ``run_date`` for ``frequency``."""
    freq = parse_frequency(frequency)
    if freq == Frequency.WEEKLY:
        return run_date + timedelta(days=7)
    if freq in _MONTH_STEPS:
        return add_months(run_date, _MONTH_STEPS[freq])
    return run_date + timedelta(days=1)


def is_due(
    next_run_date: date | None,
    end_date: date | None,
    as_of: date,
) -> bool:
    """True if a template with these dates should run on ``as_of``."""
    if next_run_date is None or next_run_date > as_of:
        return False
    return end_date is None or end_date >= as_of
