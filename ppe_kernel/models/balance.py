"""
Module: ppe_kernel.models.balance
Responsibility: ORM persistence for the Balance Store -- one row per
    (location, item type, condition) holding the current quantity.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Quantity is mutated exclusively by LedgerService through a single
    conditional UPDATE ... RETURNING statement.

Invariants enforced:
    - One bucket per key (UNIQUE constraint uq_bucket_key).
    - Buckets are never deleted, only zeroed (ORM listener in
      db/immutability.py).
    - quantity >= 0 unless the negative-stock switch is on (enforced by the
      ledger's conditional update, not by a CHECK, since the switch is
      runtime configuration).

Failure modes:
    - IntegrityError on concurrent lazy creation of the same key (the
      ledger retries inside a savepoint).
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ppe_kernel.db.base import TrackedBase


class BalanceBucket(TrackedBase):
    """Current quantity for a (location, item type, condition) slot."""

    __tablename__ = "balance_buckets"

    __table_args__ = (
        UniqueConstraint(
            "location_id", "item_type_id", "condition", name="uq_bucket_key"
        ),
        Index("idx_bucket_item_type", "item_type_id"),
    )

    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("storage_locations.id"),
        nullable=False,
    )

    item_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("item_types.id"),
        nullable=False,
    )

    # AVAILABLE, AWAITING_INSPECTION
    condition: Mapped[str] = mapped_column(String(30), nullable=False)

    quantity: Mapped[int] = mapped_column(default=0, nullable=False)

    # Number of ledger entries applied; the last entry carries this value
    entry_count: Mapped[int] = mapped_column(default=0, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<BalanceBucket {self.location_id}/{self.item_type_id}/"
            f"{self.condition} qty={self.quantity}>"
        )
