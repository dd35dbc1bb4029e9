"""
ReferenceGenerator -- race-free, date-sequenced entry references.

Responsibility:
    Produces ``JE-YYYYMMDD-NNNN`` references, validates caller-supplied
    references, and derives ``REV-``/``ADJ-``/``VOID-``/``REC-`` references
    from existing ones.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by JournalService and the recurring scheduler.

Invariants enforced:
    - Uniqueness per tenant/company: one ``ReferenceCounter`` row per
      (tenant, company, ``JE-YYYYMMDD``) is locked with
      ``SELECT ... FOR UPDATE`` and incremented, so two concurrent creators
      never draw the same number.  The ``uq_journal_scope_reference``
      constraint is the final guard.
    - A new counter is seeded from the highest sequence already used for
      that date, so references written before the counter existed (or
      supplied by hand) are never reissued.  Taken candidates are skipped.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - DuplicateReferenceError: a caller-supplied reference already exists.
"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from journal_kernel.domain.scope import LedgerScope
from journal_kernel.exceptions import DuplicateReferenceError
from journal_kernel.logging_config import get_logger
from journal_kernel.models.journal import JournalEntry
from journal_kernel.models.reference_counter import ReferenceCounter

logger = get_logger("services.reference")

DEFAULT_PREFIX = "JE"


class ReferenceGenerator:
    """
    Allocates entry references.

    Contract:
        Never commits.  The counter increment becomes visible when the
        caller's transaction commits; on rollback the number is returned.

    Usage:
        refs = ReferenceGenerator(session)
        refs.next_reference(scope, date(2024, 1, 15))  # "JE-20240115-0001"
    """

    def __init__(self, session: Session, prefix: str = DEFAULT_PREFIX):
        self._session = session
        self._prefix = prefix

    def next_reference(self, scope: LedgerScope, entry_date: date) -> str:
        """
        Allocate the next reference for ``entry_date``.

        Postconditions:
            - Returns ``<prefix>-YYYYMMDD-NNNN`` (at least four digits).
            - The returned reference does not exist in ``scope``.
        """
        counter_prefix = f"{self._prefix}-{entry_date:%Y%m%d}"
        counter = self._locked_counter(scope, counter_prefix)
        if counter is None:
            counter = self._create_counter(scope, counter_prefix)

        while True:
            counter.current_value += 1
            candidate = f"{counter_prefix}-{counter.current_value:04d}"
            if not self.exists(scope, candidate):
                break
            logger.debug(
                "reference_candidate_taken",
                extra={**scope.log_fields(), "reference": candidate},
            )

        self._session.flush()
        logger.debug(
            "reference_allocated",
            extra={**scope.log_fields(), "reference": candidate},
        )
        return candidate

    def claim(self, scope: LedgerScope, reference: str) -> str:
        """Accept a caller-supplied reference if it is free in ``scope``."""
        reference = reference.strip()
        if self.exists(scope, reference):
            raise DuplicateReferenceError(reference)
        return reference

    def derived(self, scope: LedgerScope, prefix: str, base_reference: str) -> str:
        """``PREFIX-<base>``, suffixed ``-2``, ``-3``, ... while taken."""
        candidate = f"{prefix}-{base_reference}"
        suffix = 2
        while self.exists(scope, candidate):
            candidate = f"{prefix}-{base_reference}-{suffix}"
            suffix += 1
        return candidate

    def exists(self, scope: LedgerScope, reference: str) -> bool:
        found = self._session.execute(
            select(JournalEntry.id)
            .where(
                JournalEntry.tenant_id == scope.tenant_id,
                JournalEntry.company_id == scope.company_id,
                JournalEntry.reference == reference,
            )
            .limit(1)
        ).scalar_one_or_none()
        return found is not None

    # -- counters -------------------------------------------------------------

    def _locked_counter(self, scope: LedgerScope, counter_prefix: str) -> ReferenceCounter | None:
        return self._session.execute(
            select(ReferenceCounter)
            .where(
                ReferenceCounter.tenant_id == scope.tenant_id,
                ReferenceCounter.company_id == scope.company_id,
                ReferenceCounter.prefix == counter_prefix,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, scope: LedgerScope, counter_prefix: str) -> ReferenceCounter:
        seed = self._highest_sequence(scope, counter_prefix)
        # Savepoint so a lost creation race does not roll back the caller's work
        savepoint = self._session.begin_nested()
        try:
            counter = ReferenceCounter(
                tenant_id=scope.tenant_id,
                company_id=scope.company_id,
                prefix=counter_prefix,
                current_value=seed,
            )
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug(
                "reference_counter_race_retry",
                extra={**scope.log_fields(), "prefix": counter_prefix},
            )
            savepoint.rollback()
            counter = self._locked_counter(scope, counter_prefix)
            if counter is None:
                raise
            return counter

    def _highest_sequence(self, scope: LedgerScope, counter_prefix: str) -> int:
        """Largest NNNN already used as ``<counter_prefix>-NNNN`` in scope."""
        references = self._session.execute(
            select(JournalEntry.reference).where(
                JournalEntry.tenant_id == scope.tenant_id,
                JournalEntry.company_id == scope.company_id,
                JournalEntry.reference.like(f"{counter_prefix}-%"),
            )
        ).scalars()

        highest = 0
        for reference in references:
            suffix = reference[len(counter_prefix) + 1:]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return highest
