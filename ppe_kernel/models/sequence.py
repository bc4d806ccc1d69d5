"""
Named counters behind human-facing note numbers (``movement_note.INTAKE``
-> INT-000001, INT-000002, ...).  Only SequenceService writes them, under a
row lock.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ppe_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)
