"""
Module: ppe_kernel.models.movement_note
Responsibility: ORM persistence for movement notes (batched intake, transfer,
    disposal and adjustment operations) and their lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One line per item type per note (UNIQUE uq_note_line_item).
    - DRAFT is the only mutable status; CONCLUDED and CANCELLED rows and
      their lines are frozen (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on duplicate note number or duplicate line item type.
    - ImmutabilityViolationError on edits after the note left DRAFT.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ppe_kernel.db.base import TrackedBase


class MovementNoteType(str, Enum):
    INTAKE = "INTAKE"
    TRANSFER = "TRANSFER"
    DISPOSAL = "DISPOSAL"
    ADJUSTMENT = "ADJUSTMENT"


class MovementNoteStatus(str, Enum):
    """Lifecycle status of a movement note.

    Contract: DRAFT -> CONCLUDED or DRAFT -> CANCELLED. Both are terminal.
    """

    DRAFT = "DRAFT"
    CONCLUDED = "CONCLUDED"
    CANCELLED = "CANCELLED"


TERMINAL_NOTE_STATUSES = frozenset(
    {MovementNoteStatus.CONCLUDED.value, MovementNoteStatus.CANCELLED.value}
)


class MovementNote(TrackedBase):
    """A draftable batch of stock movements concluded as one unit of work."""

    __tablename__ = "movement_notes"

    __table_args__ = (
        UniqueConstraint("number", name="uq_movement_note_number"),
        Index("idx_movement_note_status", "status"),
    )

    # Human-facing number, e.g. "TRF-000012"
    number: Mapped[str] = mapped_column(String(30), nullable=False)

    note_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=MovementNoteStatus.DRAFT.value,
        nullable=False,
    )

    source_location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("storage_locations.id"),
        nullable=True,
    )
    destination_location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("storage_locations.id"),
        nullable=True,
    )

    remarks: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    concluded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    concluded_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["MovementNoteLine"]] = relationship(
        back_populates="note",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MovementNoteLine.line_number",
    )

    def __repr__(self) -> str:
        return f"<MovementNote {self.number} {self.note_type} status={self.status}>"

    @property
    def is_draft(self) -> bool:
        return self.status == MovementNoteStatus.DRAFT


class MovementNoteLine(TrackedBase):
    """
    One item type on a movement note.

    requested_quantity is positive, except on ADJUSTMENT notes where it is a
    non-zero signed delta.  processed_quantity is set on conclusion to the
    signed quantity actually applied.
    """

    __tablename__ = "movement_note_lines"

    __table_args__ = (
        UniqueConstraint("note_id", "item_type_id", name="uq_note_line_item"),
    )

    note_id: Mapped[UUID] = mapped_column(
        ForeignKey("movement_notes.id"),
        nullable=False,
    )
    item_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("item_types.id"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    requested_quantity: Mapped[int] = mapped_column(nullable=False)
    processed_quantity: Mapped[int | None] = mapped_column(nullable=True)

    note: Mapped[MovementNote] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<MovementNoteLine {self.line_number} item={self.item_type_id} "
            f"qty={self.requested_quantity}>"
        )
