"""
journal_batch.domain.types -- Pure frozen dataclasses for batch operations.

ZERO I/O.  Frozen dataclasses with enum fields and tuples for immutable
collections, in the same shape as the kernel's DTOs.

``BatchResult.to_dict()`` renders the wire shape consumed by the calling
layer::

    {
        "success": [...],
        "errors": [...],
        "summary": {"total", "successful", "failed", "processingTime", ...},
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class BatchOperation(str, Enum):
    """Batch operation kinds; each has its own size limit."""

    CREATE = "create"
    APPROVE = "approve"
    POST = "post"
    REVERSE = "reverse"


# Batch create stops at the first failure unless told otherwise; the other
# operations collect failures and keep going.
DEFAULT_STOP_ON_ERROR: dict[BatchOperation, bool] = {
    BatchOperation.CREATE: True,
    BatchOperation.APPROVE: False,
    BatchOperation.POST: False,
    BatchOperation.REVERSE: False,
}

DEFAULT_BATCH_LIMITS: dict[BatchOperation, int] = {
    BatchOperation.CREATE: 100,
    BatchOperation.APPROVE: 50,
    BatchOperation.POST: 50,
    BatchOperation.REVERSE: 25,
}


@dataclass(frozen=True)
class BatchOptions:
    """Caller options.  ``stop_on_error=None`` means the operation default."""

    stop_on_error: bool | None = None
    validate_balances: bool = True

    def resolve_stop_on_error(self, operation: BatchOperation) -> bool:
        if self.stop_on_error is None:
            return DEFAULT_STOP_ON_ERROR[operation]
        return self.stop_on_error


@dataclass(frozen=True)
class BatchItemSuccess:
    """One item that was applied."""

    index: int
    entry_id: UUID
    reference: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "entryId": str(self.entry_id),
            "reference": self.reference,
            **{k: _wire(v) for k, v in self.data.items()},
        }


@dataclass(frozen=True)
class BatchItemError:
    """One item that failed; its effects were rolled back."""

    index: int
    key: str  # entry id, or the item's reference / position for creates
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "key": self.key,
            "code": self.code,
            "error": self.message,
            "details": {k: _wire(v) for k, v in self.details.items()},
        }


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    processing_time_ms: int
    # Operation-specific totals (batch reverse: linked movement counts)
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "processingTime": self.processing_time_ms,
            **{k: _wire(v) for k, v in self.extras.items()},
        }


@dataclass(frozen=True)
class BatchResult:
    """Outcome of a batch call.

    ``rolled_back`` is True when ``stop_on_error`` aborted the batch; in that
    case ``success`` is empty and ``errors`` holds the failure that stopped it.
    """

    operation: BatchOperation
    success: tuple[BatchItemSuccess, ...]
    errors: tuple[BatchItemError, ...]
    summary: BatchSummary
    rolled_back: bool = False
    batch_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": [item.to_dict() for item in self.success],
            "errors": [item.to_dict() for item in self.errors],
            "summary": self.summary.to_dict(),
        }


def _wire(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_wire(v) for v in value]
    return value
