"""
Gapless per-type counters for movement note numbers (INT-000001, ...).

The counter row is read ``FOR UPDATE`` so two concurrent drafts of the same
type serialize on it; the increment becomes visible when the caller commits.
A missing counter is created inside a savepoint, and a unique-name collision
with a concurrent creator falls back to locking the winner's row.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ppe_kernel.logging_config import get_logger
from ppe_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """Increment ``sequence_name`` and return the new value; the first call returns 1."""
        counter = self._lock(sequence_name) or self._create(sequence_name)
        counter.current_value += 1
        self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        return self._session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        )

    def _lock(self, sequence_name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).one_or_none()

    def _create(self, sequence_name: str) -> SequenceCounter:
        counter = SequenceCounter(name=sequence_name, current_value=0)
        try:
            with self._session.begin_nested():
                self._session.add(counter)
        except IntegrityError:
            logger.debug("sequence_counter_race", extra={"sequence_name": sequence_name})
            winner = self._lock(sequence_name)
            if winner is None:
                raise
            return winner
        return counter
