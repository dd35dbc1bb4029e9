"""
Tenant/company scope and request metadata value objects.

Every service and selector operation takes a ``LedgerScope`` as its first
argument.  Nothing in the kernel reads tenant, company or actor from ambient
state; LogContext binding is a logging convenience, not a source of truth.
"""

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class LedgerScope:
    """The tenant/company pair that owns every ledger row."""

    tenant_id: str
    company_id: str

    def __post_init__(self) -> None:
        if not self.tenant_id or not self.company_id:
            raise ValueError("LedgerScope requires tenant_id and company_id")

    def log_fields(self) -> dict[str, str]:
        return {"tenant_id": self.tenant_id, "company_id": self.company_id}


@dataclass(frozen=True)
class RequestMetadata:
    """Caller-supplied request details stored verbatim on audit records."""

    ip_address: str | None = None
    user_agent: str | None = None
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}
