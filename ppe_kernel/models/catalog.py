"""
Module: ppe_kernel.models.catalog
Responsibility: Reference data the kernel reads but does not own: storage
    locations, item types (with shelf life and active/discontinued status)
    and worker records that receive deliveries.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Location and item-type codes are unique.
    - shelf_life_days is either NULL (no fixed life) or a positive integer.

Audit relevance:
    Return deadlines are derived from ItemType.shelf_life_days at delivery
    time and never recomputed, so later catalog edits do not rewrite history.
"""

from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ppe_kernel.db.base import TrackedBase


class WorkerRecordStatus(str, Enum):
    """Status of a worker's PPE record."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class StorageLocation(TrackedBase):
    """A stockroom or warehouse holding balance buckets."""

    __tablename__ = "storage_locations"

    __table_args__ = (
        UniqueConstraint("code", name="uq_storage_location_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<StorageLocation {self.code}>"


class ItemType(TrackedBase):
    """A kind of PPE (helmet, glove model, ...)."""

    __tablename__ = "item_types"

    __table_args__ = (
        UniqueConstraint("code", name="uq_item_type_code"),
        CheckConstraint(
            "shelf_life_days IS NULL OR shelf_life_days > 0",
            name="ck_item_type_shelf_life_positive",
        ),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Days a delivered unit may stay with the worker; NULL = no fixed life
    shelf_life_days: Mapped[int | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<ItemType {self.code} life={self.shelf_life_days}>"


class WorkerRecord(TrackedBase):
    """
    A worker's PPE record.

    Deliveries reference it; it never owns delivery or unit rows.
    """

    __tablename__ = "worker_records"

    holder_name: Mapped[str] = mapped_column(String(200), nullable=False)
    holder_document: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=WorkerRecordStatus.ACTIVE.value,
        nullable=False,
    )

    @property
    def is_active(self) -> bool:
        return self.status == WorkerRecordStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<WorkerRecord {self.id} status={self.status}>"
