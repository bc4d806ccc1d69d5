"""
Module: ppe_kernel.models.ledger
Responsibility: ORM persistence for the movement ledger -- the append-only
    audit trail of every balance change.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Rows are written exclusively by LedgerService.

Invariants enforced:
    - quantity > 0; direction is implied by kind (CHECK constraint).
    - balance_after = balance_before + sign(kind) * quantity (computed by the
      ledger from the value returned by the balance UPDATE).
    - Entries are never updated or deleted (ORM listeners in
      db/immutability.py).
    - An entry is reversed at most once (UNIQUE on reversal_of_id).

Failure modes:
    - IntegrityError on a second reversal racing past the service check.
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    Every bucket quantity can be replayed from its entries: the first entry's
    balance_before is zero and each balance_after equals the balance_before
    of the entry with the next bucket_sequence.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ppe_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from ppe_kernel.models.balance import BalanceBucket


class LedgerEntry(TrackedBase):
    """
    One immutable balance change on one bucket.

    Optional links tie the entry to the movement note, delivery or delivery
    unit that caused it, and to the original entry when this is a reversal.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_ledger_quantity_positive"),
        UniqueConstraint("reversal_of_id", name="uq_ledger_reversal_of"),
        UniqueConstraint("bucket_id", "bucket_sequence", name="uq_ledger_bucket_sequence"),
        Index("idx_ledger_bucket", "bucket_id"),
        Index("idx_ledger_note", "movement_note_id"),
        Index("idx_ledger_delivery", "delivery_id"),
        Index("idx_ledger_unit", "delivery_unit_id"),
        Index("idx_ledger_kind", "kind"),
    )

    bucket_id: Mapped[UUID] = mapped_column(
        ForeignKey("balance_buckets.id"),
        nullable=False,
    )

    # 1-based position of this entry in its bucket's history
    bucket_sequence: Mapped[int] = mapped_column(nullable=False)

    # MovementKind value
    kind: Mapped[str] = mapped_column(String(40), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)
    balance_before: Mapped[int] = mapped_column(nullable=False)
    balance_after: Mapped[int] = mapped_column(nullable=False)

    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    movement_note_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("movement_notes.id"),
        nullable=True,
    )

    delivery_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("deliveries.id"),
        nullable=True,
    )

    delivery_unit_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("delivery_units.id"),
        nullable=True,
    )

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("ledger_entries.id"),
        nullable=True,
    )

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    bucket: Mapped["BalanceBucket"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.id} {self.kind} qty={self.quantity} "
            f"{self.balance_before}->{self.balance_after}>"
        )

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None
