"""
BatchProcessor -- SAVEPOINT-per-item batch create/approve/post/reverse.

Contract:
    Applies one lifecycle operation to many items inside the caller's
    transaction and reports per-item outcomes.

Architecture: journal_batch/services.  Imports kernel services; the kernel
    never imports from here.

Invariants enforced:
    - Size limits are checked before any work (BatchSizeExceededError,
      EmptyBatchError).
    - One batch SAVEPOINT wraps the run and each item gets its own nested
      SAVEPOINT.  A JournalKernelError rolls back only that item.
    - With ``stop_on_error`` the first failure rolls back the batch
      SAVEPOINT: no item of the batch survives.
    - Any other exception (database failure, programming error) rolls back
      the batch SAVEPOINT and propagates; the caller's transaction decides
      the rest.
    - Timing uses ``time.monotonic``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from journal_kernel.domain.dtos import EntrySpec
from journal_kernel.domain.lifecycle import EntryOrigin
from journal_kernel.domain.scope import LedgerScope, RequestMetadata
from journal_kernel.exceptions import (
    BatchSizeExceededError,
    EmptyBatchError,
    EntryNotFoundError,
    JournalKernelError,
)
from journal_kernel.logging_config import LogContext, get_logger
from journal_kernel.services.approval_service import ApprovalService
from journal_kernel.services.journal_service import JournalService

from journal_batch.domain.types import (
    DEFAULT_BATCH_LIMITS,
    BatchItemError,
    BatchItemSuccess,
    BatchOperation,
    BatchOptions,
    BatchResult,
    BatchSummary,
)

logger = get_logger("batch.processor")

T = TypeVar("T")


def _as_entry_id(value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise EntryNotFoundError(str(value))


class BatchProcessor:
    """Batch lifecycle operations with per-item SAVEPOINT isolation.

    Usage:
        processor = BatchProcessor(session, journal, approvals)
        result = processor.batch_post(scope, entry_ids, actor_id="u-1")
        result.to_dict()["summary"]["failed"]
    """

    def __init__(
        self,
        session: Session,
        journal: JournalService,
        approvals: ApprovalService,
        *,
        limits: dict[BatchOperation, int] | None = None,
    ):
        self._session = session
        self._journal = journal
        self._approvals = approvals
        self._limits = {**DEFAULT_BATCH_LIMITS, **(limits or {})}

    # -- operations -----------------------------------------------------------

    def batch_create(
        self,
        scope: LedgerScope,
        specs: Sequence[EntrySpec],
        *,
        actor_id: str,
        options: BatchOptions = BatchOptions(),
        metadata: RequestMetadata | None = None,
    ) -> BatchResult:
        """Create entries (origin BATCH).  Stops at the first failure by default."""

        def apply(index: int, spec: EntrySpec) -> BatchItemSuccess:
            entry = self._journal.create_entry(
                scope,
                spec,
                actor_id=actor_id,
                validate_balance=options.validate_balances,
                origin=EntryOrigin.BATCH,
                metadata=metadata,
                comments=f"Batch created entry {index + 1}",
            )
            return BatchItemSuccess(
                index=index,
                entry_id=entry.id,
                reference=entry.reference,
                data={
                    "totalDebit": entry.total_debit,
                    "totalCredit": entry.total_credit,
                    "isBalanced": entry.is_balanced,
                },
            )

        return self._run(
            scope,
            BatchOperation.CREATE,
            list(specs),
            apply,
            key_of=lambda index, spec: spec.reference or f"Entry {index + 1}",
            options=options,
            actor_id=actor_id,
        )

    def batch_approve(
        self,
        scope: LedgerScope,
        entry_ids: Sequence[UUID | str],
        *,
        actor_id: str,
        comments: str = "Batch approval",
        options: BatchOptions = BatchOptions(),
        metadata: RequestMetadata | None = None,
    ) -> BatchResult:
        """Approve every pending approval of each entry and post it."""

        def apply(index: int, entry_id: UUID | str) -> BatchItemSuccess:
            entry = self._approvals.approve_all_pending(
                scope,
                _as_entry_id(entry_id),
                actor_id=actor_id,
                comments=comments,
                metadata=metadata,
            )
            return BatchItemSuccess(
                index=index,
                entry_id=entry.id,
                reference=entry.reference,
                data={"status": entry.status},
            )

        return self._run(
            scope, BatchOperation.APPROVE, list(entry_ids), apply,
            key_of=lambda index, entry_id: str(entry_id),
            options=options,
            actor_id=actor_id,
        )

    def batch_post(
        self,
        scope: LedgerScope,
        entry_ids: Sequence[UUID | str],
        *,
        actor_id: str,
        options: BatchOptions = BatchOptions(),
        metadata: RequestMetadata | None = None,
    ) -> BatchResult:
        """Post DRAFT entries."""

        def apply(index: int, entry_id: UUID | str) -> BatchItemSuccess:
            entry = self._journal.post_entry(
                scope,
                _as_entry_id(entry_id),
                actor_id=actor_id,
                comments="Batch post",
                metadata=metadata,
            )
            return BatchItemSuccess(
                index=index,
                entry_id=entry.id,
                reference=entry.reference,
                data={"status": entry.status},
            )

        return self._run(
            scope, BatchOperation.POST, list(entry_ids), apply,
            key_of=lambda index, entry_id: str(entry_id),
            options=options,
            actor_id=actor_id,
        )

    def batch_reverse(
        self,
        scope: LedgerScope,
        entry_ids: Sequence[UUID | str],
        *,
        actor_id: str,
        reason: str = "Batch reversal",
        options: BatchOptions = BatchOptions(),
        metadata: RequestMetadata | None = None,
    ) -> BatchResult:
        """Reverse POSTED entries, totalling linked movements in the summary."""

        def apply(index: int, entry_id: UUID | str) -> BatchItemSuccess:
            result = self._journal.reverse_entry(
                scope,
                _as_entry_id(entry_id),
                actor_id=actor_id,
                reason=reason,
                metadata=metadata,
            )
            return BatchItemSuccess(
                index=index,
                entry_id=result.original.id,
                reference=result.original.reference,
                data={
                    "reversalEntryId": result.reversal.id,
                    "reversalReference": result.reversal.reference,
                    "inventoryMovementsReversed": result.movements_reversed,
                    "stockRestored": result.stock_restored,
                },
            )

        def totals(successes: Sequence[BatchItemSuccess]) -> dict[str, Any]:
            return {
                "inventoryMovementsReversed": sum(
                    s.data["inventoryMovementsReversed"] for s in successes
                ),
                "stockRestored": sum(
                    (s.data["stockRestored"] for s in successes), Decimal("0"),
                ),
            }

        return self._run(
            scope, BatchOperation.REVERSE, list(entry_ids), apply,
            key_of=lambda index, entry_id: str(entry_id),
            options=options,
            actor_id=actor_id,
            extras=totals,
        )

    # -- execution ------------------------------------------------------------

    def _run(
        self,
        scope: LedgerScope,
        operation: BatchOperation,
        items: list[T],
        apply: Callable[[int, T], BatchItemSuccess],
        *,
        key_of: Callable[[int, T], str],
        options: BatchOptions,
        actor_id: str,
        extras: Callable[[Sequence[BatchItemSuccess]], dict[str, Any]] | None = None,
    ) -> BatchResult:
        if not items:
            raise EmptyBatchError(operation.value)
        limit = self._limits[operation]
        if len(items) > limit:
            raise BatchSizeExceededError(operation.value, len(items), limit)

        stop_on_error = options.resolve_stop_on_error(operation)
        batch_id = uuid4()
        start_time = time.monotonic()
        successes: list[BatchItemSuccess] = []
        errors: list[BatchItemError] = []
        rolled_back = False

        with LogContext.bind(batch_id=batch_id, actor_id=actor_id, **scope.log_fields()):
            logger.info(
                "batch_started",
                extra={
                    "operation": operation.value,
                    "size": len(items),
                    "stop_on_error": stop_on_error,
                },
            )

            batch_savepoint = self._session.begin_nested()
            try:
                for index, item in enumerate(items):
                    item_savepoint = self._session.begin_nested()
                    try:
                        success = apply(index, item)
                        item_savepoint.commit()
                    except JournalKernelError as exc:
                        item_savepoint.rollback()
                        errors.append(BatchItemError(
                            index=index,
                            key=key_of(index, item),
                            code=exc.code,
                            message=exc.message,
                            details=exc.details(),
                        ))
                        logger.warning(
                            "batch_item_failed",
                            extra={
                                "operation": operation.value,
                                "index": index,
                                "error_code": exc.code,
                                "error": exc.message,
                            },
                        )
                        if stop_on_error:
                            batch_savepoint.rollback()
                            successes = []
                            rolled_back = True
                            break
                        continue
                    except Exception:
                        item_savepoint.rollback()
                        raise
                    successes.append(success)

                if not rolled_back:
                    batch_savepoint.commit()
            except Exception:
                if batch_savepoint.is_active:
                    batch_savepoint.rollback()
                logger.exception(
                    "batch_aborted",
                    extra={"operation": operation.value, "processed": len(successes) + len(errors)},
                )
                raise

            summary = BatchSummary(
                total=len(items),
                successful=len(successes),
                failed=len(errors),
                processing_time_ms=int((time.monotonic() - start_time) * 1000),
                extras=extras(successes) if extras else {},
            )
            logger.info(
                "batch_completed",
                extra={
                    "operation": operation.value,
                    "total": summary.total,
                    "successful": summary.successful,
                    "failed": summary.failed,
                    "rolled_back": rolled_back,
                    "duration_ms": summary.processing_time_ms,
                },
            )

        return BatchResult(
            operation=operation,
            success=tuple(successes),
            errors=tuple(errors),
            summary=summary,
            rolled_back=rolled_back,
            batch_id=batch_id,
        )
