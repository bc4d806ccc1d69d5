"""
DTOs -- immutable request and result structures for kernel operations.

Responsibility:
    Defines the frozen dataclasses that cross the kernel boundary: request
    lines (DeliveryLine, ReturnItem, InventoryCount) and results
    (MovementRecord, NoteConclusionResult, DeliveryResult, ReturnResult,
    BatchReturnResult, ...).  Services accept and return these, never ORM
    instances for ledger data, so callers cannot mutate the audit trail by
    accident.  Draft-editing operations return the ORM row they edited.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``MovementRecord.from_entry`` is a
    boundary converter invoked only from the service and selector layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketKey, ReturnCondition

if TYPE_CHECKING:
    from ppe_kernel.models.ledger import LedgerEntry


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MovementRecord:
    """Read-only copy of one ledger entry."""

    entry_id: UUID
    bucket_id: UUID
    bucket_key: BucketKey
    bucket_sequence: int
    kind: MovementKind
    quantity: int
    balance_before: int
    balance_after: int
    actor_id: UUID
    occurred_at: datetime
    movement_note_id: UUID | None = None
    delivery_id: UUID | None = None
    delivery_unit_id: UUID | None = None
    reversal_of_id: UUID | None = None
    reason: str | None = None

    @property
    def signed_quantity(self) -> int:
        return self.kind.sign * self.quantity

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> MovementRecord:
        bucket = entry.bucket
        return cls(
            entry_id=entry.id,
            bucket_id=entry.bucket_id,
            bucket_key=BucketKey(bucket.location_id, bucket.item_type_id, bucket.condition),
            bucket_sequence=entry.bucket_sequence,
            kind=MovementKind(entry.kind),
            quantity=entry.quantity,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            actor_id=entry.actor_id,
            occurred_at=entry.occurred_at,
            movement_note_id=entry.movement_note_id,
            delivery_id=entry.delivery_id,
            delivery_unit_id=entry.delivery_unit_id,
            reversal_of_id=entry.reversal_of_id,
            reason=entry.reason,
        )


@dataclass(frozen=True)
class BucketBalance:
    bucket_id: UUID
    bucket_key: BucketKey
    quantity: int


# ---------------------------------------------------------------------------
# Movement notes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoteConclusionResult:
    note_id: UUID
    number: str
    note_type: str
    movements: tuple[MovementRecord, ...]


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------


class AdjustmentDirection(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NONE = "NONE"

    @classmethod
    def of(cls, delta: int) -> AdjustmentDirection:
        if delta > 0:
            return cls.POSITIVE
        if delta < 0:
            return cls.NEGATIVE
        return cls.NONE


@dataclass(frozen=True)
class AdjustmentResult:
    movement: MovementRecord
    bucket_key: BucketKey
    balance_before: int
    balance_after: int
    delta: int
    reason: str


@dataclass(frozen=True)
class InventoryCount:
    """One physically counted bucket."""

    bucket_key: BucketKey
    counted_quantity: int
    reason: str | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    adjustments: tuple[AdjustmentResult, ...]
    skipped_count: int
    positive_count: int
    negative_count: int
    net_variance: int
    absolute_variance: int

    @property
    def processed_count(self) -> int:
        return len(self.adjustments)


@dataclass(frozen=True)
class AdjustmentPreview:
    bucket_key: BucketKey
    current_quantity: int
    new_quantity: int
    delta: int
    direction: AdjustmentDirection


@dataclass(frozen=True)
class Divergence:
    bucket_key: BucketKey
    system_quantity: int
    counted_quantity: int
    delta: int
    # Percent of the system quantity; None when the system quantity is zero
    divergence_percent: Decimal | None
    exceeds_tolerance: bool


@dataclass(frozen=True)
class AdjustmentSummary:
    movements: tuple[MovementRecord, ...]
    total_in: int
    total_out: int

    @property
    def adjustment_count(self) -> int:
        return len(self.movements)

    @property
    def net(self) -> int:
        return self.total_in - self.total_out


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeliveryLine:
    bucket_key: BucketKey
    quantity: int


@dataclass(frozen=True)
class DeliveryResult:
    delivery_id: UUID
    code: str
    status: str
    unit_ids: tuple[UUID, ...]
    movements: tuple[MovementRecord, ...]


@dataclass(frozen=True)
class DeliveryCancellationResult:
    delivery_id: UUID
    cancelled_unit_ids: tuple[UUID, ...]
    reversals: tuple[MovementRecord, ...]


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReturnItem:
    unit_id: UUID
    condition: ReturnCondition
    reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.condition, ReturnCondition):
            object.__setattr__(self, "condition", ReturnCondition(self.condition))


@dataclass(frozen=True)
class BatchReturnItem:
    delivery_id: UUID
    unit_id: UUID
    condition: ReturnCondition
    reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.condition, ReturnCondition):
            object.__setattr__(self, "condition", ReturnCondition(self.condition))


@dataclass(frozen=True)
class ReturnedUnit:
    delivery_id: UUID
    unit_id: UUID
    condition: ReturnCondition
    # None for LOST units: nothing is credited
    movement: MovementRecord | None


class ReturnProgressStatus(str, Enum):
    NOT_RETURNED = "NOT_RETURNED"
    PARTIALLY_RETURNED = "PARTIALLY_RETURNED"
    FULLY_RETURNED = "FULLY_RETURNED"


@dataclass(frozen=True)
class ReturnProgress:
    """Computed return projection of a delivery; never persisted."""

    delivery_id: UUID
    delivery_status: str
    total_units: int
    with_worker: int
    # Returned GOOD or DAMAGED
    returned: int
    lost: int
    cancelled: int

    @property
    def status(self) -> ReturnProgressStatus:
        if self.returned + self.lost == 0:
            return ReturnProgressStatus.NOT_RETURNED
        if self.with_worker == 0:
            return ReturnProgressStatus.FULLY_RETURNED
        return ReturnProgressStatus.PARTIALLY_RETURNED


@dataclass(frozen=True)
class ReturnResult:
    delivery_id: UUID
    returned: tuple[ReturnedUnit, ...]
    progress: ReturnProgress


@dataclass(frozen=True)
class BatchItemError:
    delivery_id: UUID
    unit_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class BatchReturnResult:
    """
    Outcome of a best-effort batch return.

    Items in ``processed`` are persisted; items in ``errors`` left no trace.
    """

    processed: tuple[ReturnedUnit, ...]
    errors: tuple[BatchItemError, ...]

    @property
    def is_complete(self) -> bool:
        return not self.errors

    @property
    def delivery_ids(self) -> tuple[UUID, ...]:
        seen: dict[UUID, None] = {}
        for item in self.processed:
            seen.setdefault(item.delivery_id, None)
        return tuple(seen)


@dataclass(frozen=True)
class ReturnCancellationResult:
    delivery_id: UUID
    restored_unit_ids: tuple[UUID, ...]
    reversals: tuple[MovementRecord, ...]


@dataclass(frozen=True)
class UnitEligibility:
    unit_id: UUID
    eligible: bool
    reason: str | None = None


@dataclass(frozen=True)
class EligibilityReport:
    delivery_id: UUID
    units: tuple[UnitEligibility, ...] = field(default_factory=tuple)
    # Delivery-level problem that makes every unit ineligible
    blocking_reason: str | None = None

    @property
    def eligible_unit_ids(self) -> tuple[UUID, ...]:
        return tuple(u.unit_id for u in self.units if u.eligible)

    @property
    def ineligible(self) -> tuple[UnitEligibility, ...]:
        return tuple(u for u in self.units if not u.eligible)

    @property
    def all_eligible(self) -> bool:
        return self.blocking_reason is None and not self.ineligible
