"""
Input DTOs for the journal lifecycle.

Frozen dataclasses that the calling layer builds from its request payloads.
Amounts are coerced to Decimal on construction; floats go through ``str``
so that 0.1 stays 0.1.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from journal_kernel.domain.recurrence import Frequency


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _to_uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, UUID) else UUID(str(value))


def _to_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])


def _pick(payload: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return default


@dataclass(frozen=True)
class LineSpec:
    """One debit/credit line of a candidate entry."""

    account_id: UUID
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    memo: str | None = None
    department: str | None = None
    project: str | None = None
    location: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "account_id", _to_uuid(self.account_id))
        object.__setattr__(self, "debit", to_decimal(self.debit))
        object.__setattr__(self, "credit", to_decimal(self.credit))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LineSpec":
        return cls(
            account_id=_pick(payload, "account_id", "accountId"),
            debit=_pick(payload, "debit", default=0),
            credit=_pick(payload, "credit", default=0),
            memo=_pick(payload, "memo"),
            department=_pick(payload, "department"),
            project=_pick(payload, "project"),
            location=_pick(payload, "location"),
        )

    def dimensions(self) -> dict[str, str]:
        return {
            k: v for k, v in (
                ("department", self.department),
                ("project", self.project),
                ("location", self.location),
            ) if v is not None
        }


@dataclass(frozen=True)
class EntrySpec:
    """A candidate journal entry: header fields plus lines."""

    entry_date: date
    memo: str
    lines: tuple[LineSpec, ...]
    reference: str | None = None
    entry_type_id: UUID | None = None
    requires_approval: bool = False
    # Linked transaction in another subsystem (e.g. "inventory", "<movement id>")
    source_domain: str | None = None
    source_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "entry_type_id", _to_uuid(self.entry_type_id))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "EntrySpec":
        """Build from a request payload (snake_case or camelCase keys)."""
        return cls(
            entry_date=_to_date(_pick(payload, "entry_date", "date")),
            memo=_pick(payload, "memo", default=""),
            lines=tuple(LineSpec.from_dict(line) for line in _pick(payload, "lines", default=())),
            reference=_pick(payload, "reference"),
            entry_type_id=_pick(payload, "entry_type_id", "entryTypeId"),
            requires_approval=bool(_pick(payload, "requires_approval", "requiresApproval", default=False)),
            source_domain=_pick(payload, "source_domain", "sourceDomain"),
            source_id=_pick(payload, "source_id", "sourceId"),
        )


@dataclass(frozen=True)
class TemplateLineSpec:
    """A template line: account plus debit/credit formulas."""

    account_id: UUID
    debit_formula: str | None = None
    credit_formula: str | None = None
    memo: str | None = None
    department: str | None = None
    project: str | None = None
    location: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "account_id", _to_uuid(self.account_id))


@dataclass(frozen=True)
class TemplateSpec:
    """A reusable entry skeleton with optional recurrence."""

    name: str
    lines: tuple[TemplateLineSpec, ...]
    description: str | None = None
    entry_type_id: UUID | None = None
    is_recurring: bool = False
    frequency: Frequency | None = None
    next_run_date: date | None = None
    end_date: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "entry_type_id", _to_uuid(self.entry_type_id))
