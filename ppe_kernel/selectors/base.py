"""
Module: ppe_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors are the query side of the kernel: structured read access to
    balances, ledger history and delivery progress without any mutation.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ (DTOs and value objects).  MUST NOT import from services/ or
    outer layers.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but never
      call session.add(), session.delete(), session.commit() or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses or plain
      values, not ORM instances.
    - Session ownership: the caller owns the session and its transaction.

Audit relevance:
    ``LedgerSelector.replay_balance`` recomputes a bucket from its entries,
    so the stored quantity can always be checked against the ledger.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ppe_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
