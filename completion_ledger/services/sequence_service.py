"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers per named sequence.  Invoice
    numbering keeps one sequence per invoice prefix.  Uses a dedicated
    counter table with row-level locking (``SELECT ... FOR UPDATE``) to
    guarantee uniqueness and ordering under concurrent access.

Architecture position:
    Ledger > Services -- imperative shell infrastructure.  Implements the
    SequenceAllocator port for the SQL unit of work.

Invariants enforced:
    - The SQL aggregate-max-plus-one anti-pattern is FORBIDDEN; the locked
      counter row is the sole source of truth for the next value.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from completion_ledger.logging_config import get_logger
from completion_ledger.models.sequence import SequenceCounter
from completion_ledger.stores.base import SequenceAllocator

logger = get_logger("services.sequence")


class SequenceService(SequenceAllocator):
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - Strictly monotonic sequences via locked counter row.
        - Gap-safe under normal operation; a rolled-back transaction
          returns its value.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        1. Locks the sequence row (or creates it if not exists)
        2. Increments the counter
        3. Returns the new value
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # Another thread may create it simultaneously; the savepoint keeps
            # the rest of the caller's transaction intact on a lost race.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Set a sequence to a specific value.

        Used to seed a prefix's counter from invoice numbers that predate
        it (imports), and by tests.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=value)
            self._session.add(counter)
        else:
            counter.current_value = value

        self._session.flush()

    def ensure_at_least(self, sequence_name: str, value: int) -> int:
        """
        Raise a sequence to ``value`` if it is currently lower.

        Returns the resulting current value.  Never lowers a counter, so it
        is safe to call with numbers recovered from existing invoices.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=value))
                self._session.flush()
                savepoint.commit()
                logger.info(
                    "sequence_seeded",
                    extra={"sequence_name": sequence_name, "value": value},
                )
                return value
            except IntegrityError:
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        if counter.current_value < value:
            counter.current_value = value
            self._session.flush()
            logger.info(
                "sequence_seeded",
                extra={"sequence_name": sequence_name, "value": value},
            )
        return counter.current_value
