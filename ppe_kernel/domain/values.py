"""
Value objects shared by services, selectors and callers.

BucketKey identifies a balance slot; MovementLinks carries the optional
references a ledger entry records.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class BucketCondition(str, Enum):
    """Condition status of the stock held in a bucket."""

    AVAILABLE = "AVAILABLE"
    AWAITING_INSPECTION = "AWAITING_INSPECTION"


class ReturnCondition(str, Enum):
    """Physical condition of a unit coming back from a worker."""

    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    LOST = "LOST"

    @property
    def credit_condition(self) -> BucketCondition | None:
        """Bucket condition the unit is credited to; None for LOST."""
        return _RETURN_ROUTING[self]


_RETURN_ROUTING: dict[ReturnCondition, BucketCondition | None] = {
    ReturnCondition.GOOD: BucketCondition.AVAILABLE,
    ReturnCondition.DAMAGED: BucketCondition.AWAITING_INSPECTION,
    ReturnCondition.LOST: None,
}


@dataclass(frozen=True, order=True)
class BucketKey:
    """
    (location, item type, condition) triple identifying one bucket.

    Ordering is total and is the canonical lock order for multi-bucket
    operations.
    """

    location_id: UUID
    item_type_id: UUID
    condition: BucketCondition = BucketCondition.AVAILABLE

    def __post_init__(self) -> None:
        # Accept raw strings from callers and persisted rows
        if not isinstance(self.condition, BucketCondition):
            object.__setattr__(self, "condition", BucketCondition(self.condition))

    def with_condition(self, condition: BucketCondition) -> "BucketKey":
        return BucketKey(self.location_id, self.item_type_id, condition)

    def __str__(self) -> str:
        return f"{self.location_id}/{self.item_type_id}/{self.condition.value}"


@dataclass(frozen=True)
class MovementLinks:
    """Optional references recorded on a ledger entry."""

    movement_note_id: UUID | None = None
    delivery_id: UUID | None = None
    delivery_unit_id: UUID | None = None
    reversal_of_id: UUID | None = None
    reason: str | None = None
