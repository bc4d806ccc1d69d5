"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back the caller's transaction.
    - Operation atomicity: every public write operation runs inside
      ``_unit_of_work()`` (a SAVEPOINT).  When it raises, everything the
      operation wrote is rolled back and the caller's transaction is left
      exactly as it was.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Generic, Iterator, TypeVar

from sqlalchemy.orm import Session

from ppe_kernel.db.base import Base
from ppe_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage the outer transaction (commit/rollback).
        - Does NOT provide query-only methods -- those belong in
          ``ppe_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        """All-or-nothing scope for one operation (SAVEPOINT)."""
        with self.session.begin_nested():
            yield self.session
