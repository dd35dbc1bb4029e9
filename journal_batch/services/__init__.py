"""Batch services: bulk lifecycle operations and the recurring scheduler."""

from journal_batch.services.processor import BatchProcessor
from journal_batch.services.recurring import (
    RecurringFailure,
    RecurringRunResult,
    RecurringScheduler,
)

__all__ = [
    "BatchProcessor",
    "RecurringFailure",
    "RecurringRunResult",
    "RecurringScheduler",
]
