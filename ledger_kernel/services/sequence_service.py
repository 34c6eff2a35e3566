"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for posting ``seq`` values and for
    the per-prefix account code counters.  Uses a dedicated counter table
    with row-level locking (``SELECT ... FOR UPDATE``) so concurrent
    transactions never receive the same value.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LedgerService (posting seq) and AccountRegistry (account code
    allocation).

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value; an optional ``floor`` lets a caller fold in values
      that already exist outside the counter (account codes seeded before
      the counter existed).
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and re-read).

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly increasing
        integer value.  The increment is committed with the caller's
        transaction.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for
          the same sequence.
        - Returned values are > 0 and > ``floor``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    POSTING = "posting"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def account_code_sequence(prefix: str) -> str:
        """Sequence name of the account code counter for ``prefix``."""
        return f"account_code:{prefix}"

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str, floor: int = 0) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - ``sequence_name`` is a non-empty string.
            - The caller is within an active database transaction.

        Postconditions:
            - Returns ``max(current, floor) + 1``.
            - The counter row is locked until the transaction completes.

        Args:
            sequence_name: Name of the sequence.
            floor: Highest value already in use outside the counter.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            # First use of this sequence; another transaction may create the
            # row at the same time, so insert inside a savepoint.
            savepoint = self._session.begin_nested()
            try:
                value = floor + 1
                counter = SequenceCounter(name=sequence_name, current_value=value)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": value},
                )
                return value
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value = max(counter.current_value, floor) + 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """
        Get the current value of a sequence without incrementing.

        Returns:
            Current value, or None if sequence doesn't exist.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
