"""
Module: ppe_kernel.models.delivery
Responsibility: ORM persistence for deliveries and the individually tracked
    units they expand into.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A DeliveryUnit always represents exactly one physical unit
      (CHECK quantity = 1); units are never aggregated.
    - A Delivery exclusively owns its units.
    - return_deadline is fixed at creation.
    - CANCELLED deliveries are frozen (ORM listener in db/immutability.py).

Audit relevance:
    Each unit is linked to exactly one ISSUE ledger entry and, once returned,
    to at most one live RETURN entry, giving per-unit traceability from
    stockroom to worker and back.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ppe_kernel.db.base import TrackedBase


class DeliveryStatus(str, Enum):
    """Lifecycle status of a delivery.

    Contract: PENDING_SIGNATURE -> SIGNED; PENDING_SIGNATURE/SIGNED -> CANCELLED.
    Return progress is a computed projection, not a stored status.
    """

    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    SIGNED = "SIGNED"
    CANCELLED = "CANCELLED"


class DeliveryUnitStatus(str, Enum):
    WITH_WORKER = "WITH_WORKER"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class Delivery(TrackedBase):
    """A hand-off of individually tracked units to a worker."""

    __tablename__ = "deliveries"

    __table_args__ = (
        UniqueConstraint("code", name="uq_delivery_code"),
        Index("idx_delivery_worker_record", "worker_record_id"),
        Index("idx_delivery_status", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    worker_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker_records.id"),
        nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("storage_locations.id"),
        nullable=False,
    )
    responsible_actor_id: Mapped[UUID] = mapped_column(nullable=False)
    delivery_date: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        default=DeliveryStatus.PENDING_SIGNATURE.value,
        nullable=False,
    )

    signed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    signed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    signature_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    units: Mapped[list["DeliveryUnit"]] = relationship(
        back_populates="delivery",
        lazy="selectin",
        order_by="DeliveryUnit.sequence",
    )

    def __repr__(self) -> str:
        return f"<Delivery {self.code} status={self.status}>"


class DeliveryUnit(TrackedBase):
    """One physical PPE item tracked from issue to return."""

    __tablename__ = "delivery_units"

    __table_args__ = (
        CheckConstraint("quantity = 1", name="ck_delivery_unit_single"),
        UniqueConstraint("code", name="uq_delivery_unit_code"),
        Index("idx_delivery_unit_delivery", "delivery_id"),
        Index("idx_delivery_unit_status", "status"),
    )

    delivery_id: Mapped[UUID] = mapped_column(
        ForeignKey("deliveries.id"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)

    source_bucket_id: Mapped[UUID] = mapped_column(
        ForeignKey("balance_buckets.id"),
        nullable=False,
    )
    item_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("item_types.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(default=1, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=DeliveryUnitStatus.WITH_WORKER.value,
        nullable=False,
    )

    # NULL when the item type has no fixed shelf life
    return_deadline: Mapped[datetime | None] = mapped_column(nullable=True)

    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    # GOOD, DAMAGED, LOST
    return_condition: Mapped[str | None] = mapped_column(String(20), nullable=True)
    return_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    delivery: Mapped[Delivery] = relationship(back_populates="units")

    def __repr__(self) -> str:
        return f"<DeliveryUnit {self.code} status={self.status}>"
