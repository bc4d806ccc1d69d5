"""
AdjustmentService -- direct stock adjustments and physical-count reconciliation.

Responsibility:
    Sets a bucket to an absolute quantity by emitting one ADJUSTMENT_IN or
    ADJUSTMENT_OUT ledger entry for the difference.  The bulk variant
    reconciles a list of counted buckets in one unit of work.  Also offers
    read-only previews (simulation, divergence assessment).

Architecture position:
    Kernel > Services.  Writes through LedgerService.  Never commits.

Invariants enforced:
    - Every adjustment is gated by the forced-adjustments switch, and an
      actor id is required regardless of the switch.
    - A reason is mandatory for a direct adjustment.
    - The ledger write is a compare-and-swap on the balance read under
      lock, so the entry's balance_after always equals the target quantity.
    - Reconciliation locks every counted bucket in canonical order first.

Failure modes:
    - MissingActorError, ForcedAdjustmentsDisabledError, MissingReasonError,
      InvalidQuantityError, NoAdjustmentNeededError, EmptyRequestError,
      StaleBalanceError.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ppe_kernel.domain.clock import Clock
from ppe_kernel.domain.dtos import (
    AdjustmentDirection,
    AdjustmentPreview,
    AdjustmentResult,
    Divergence,
    InventoryCount,
    MovementRecord,
    ReconciliationResult,
)
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.domain.values import BucketKey, MovementLinks
from ppe_kernel.exceptions import (
    EmptyRequestError,
    ForcedAdjustmentsDisabledError,
    InvalidQuantityError,
    MissingActorError,
    MissingReasonError,
    NoAdjustmentNeededError,
)
from ppe_kernel.logging_config import get_logger
from ppe_kernel.models.ledger import LedgerEntry
from ppe_kernel.services.base import BaseService
from ppe_kernel.services.ledger_service import LedgerService

logger = get_logger("services.adjustment")

_PERCENT = Decimal("0.01")


def count_reason(counted: int, system: int) -> str:
    return f"Inventory count: counted {counted}, system {system}"


class AdjustmentService(BaseService[LedgerEntry]):
    """Direct adjustments and reconciliation."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerService | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self._clock)

    def adjust_direct(
        self,
        bucket_key: BucketKey,
        new_quantity: int,
        actor_id: UUID,
        reason: str,
        policy: StockPolicy,
    ) -> AdjustmentResult:
        """
        Set ``bucket_key`` to ``new_quantity``.

        Preconditions:
            - actor_id present, forced adjustments enabled, reason non-empty,
              new_quantity >= 0 (checked in that order).
        Postconditions:
            - Exactly one ADJUSTMENT_* entry with balance_after == new_quantity.

        Raises:
            NoAdjustmentNeededError: The bucket already holds new_quantity.
        """
        self._check_gate(actor_id, policy, "adjust_direct")
        if not reason or not reason.strip():
            raise MissingReasonError("adjust_direct")
        self._check_target(new_quantity)

        with self._unit_of_work():
            result = self._adjust_locked(bucket_key, new_quantity, actor_id, reason.strip())

        logger.info(
            "direct_adjustment_applied",
            extra={
                "bucket_key": str(bucket_key),
                "balance_before": result.balance_before,
                "balance_after": result.balance_after,
                "delta": result.delta,
            },
        )
        return result

    def reconcile_inventory(
        self,
        counts: Sequence[InventoryCount],
        actor_id: UUID,
        policy: StockPolicy,
    ) -> ReconciliationResult:
        """
        Bring every counted bucket to its counted quantity, all or nothing.

        Buckets whose count matches the system balance are skipped.  A count
        without a reason gets ``"Inventory count: counted <n>, system <m>"``.
        """
        self._check_gate(actor_id, policy, "reconcile_inventory")
        if not counts:
            raise EmptyRequestError("reconcile_inventory")
        for count in counts:
            self._check_target(count.counted_quantity)

        adjustments: list[AdjustmentResult] = []
        skipped = 0
        with self._unit_of_work():
            locked = self._ledger.lock_buckets(c.bucket_key for c in counts)
            for count in counts:
                bucket = locked.get(count.bucket_key)
                current = bucket.quantity if bucket is not None else 0
                if current == count.counted_quantity:
                    skipped += 1
                    continue
                reason = count.reason or count_reason(count.counted_quantity, current)
                adjustments.append(
                    self._adjust_locked(count.bucket_key, count.counted_quantity, actor_id, reason)
                )

        result = ReconciliationResult(
            adjustments=tuple(adjustments),
            skipped_count=skipped,
            positive_count=sum(1 for a in adjustments if a.delta > 0),
            negative_count=sum(1 for a in adjustments if a.delta < 0),
            net_variance=sum(a.delta for a in adjustments),
            absolute_variance=sum(abs(a.delta) for a in adjustments),
        )
        logger.info(
            "inventory_reconciled",
            extra={
                "processed_count": result.processed_count,
                "skipped_count": result.skipped_count,
                "net_variance": result.net_variance,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Read-only previews
    # ------------------------------------------------------------------

    def simulate_adjustment(self, bucket_key: BucketKey, new_quantity: int) -> AdjustmentPreview:
        self._check_target(new_quantity)
        current = self._system_quantity(bucket_key)
        delta = new_quantity - current
        return AdjustmentPreview(
            bucket_key=bucket_key,
            current_quantity=current,
            new_quantity=new_quantity,
            delta=delta,
            direction=AdjustmentDirection.of(delta),
        )

    def assess_divergences(
        self,
        counts: Sequence[InventoryCount],
        tolerance_percent: Decimal = Decimal("0"),
    ) -> list[Divergence]:
        """Compare counts with system balances; matching buckets are omitted."""
        tolerance = Decimal(tolerance_percent)
        divergences = []
        for count in counts:
            system = self._system_quantity(count.bucket_key)
            delta = count.counted_quantity - system
            if delta == 0:
                continue
            if system == 0:
                percent = None
                exceeds = True
            else:
                percent = (Decimal(delta) * 100 / Decimal(abs(system))).quantize(
                    _PERCENT, rounding=ROUND_HALF_UP
                )
                exceeds = abs(percent) > tolerance
            divergences.append(
                Divergence(
                    bucket_key=count.bucket_key,
                    system_quantity=system,
                    counted_quantity=count.counted_quantity,
                    delta=delta,
                    divergence_percent=percent,
                    exceeds_tolerance=exceeds,
                )
            )
        return divergences

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_gate(actor_id: UUID, policy: StockPolicy, operation: str) -> None:
        if actor_id is None:
            raise MissingActorError(operation)
        if not policy.allow_forced_adjustments:
            raise ForcedAdjustmentsDisabledError()

    @staticmethod
    def _check_target(new_quantity: int) -> None:
        if new_quantity < 0:
            raise InvalidQuantityError(new_quantity, "adjusted quantity must be >= 0")

    def _system_quantity(self, bucket_key: BucketKey) -> int:
        bucket = self._ledger.find_bucket(bucket_key)
        return bucket.quantity if bucket is not None else 0

    def _adjust_locked(
        self,
        bucket_key: BucketKey,
        new_quantity: int,
        actor_id: UUID,
        reason: str,
    ) -> AdjustmentResult:
        bucket = self._ledger.find_bucket(bucket_key, for_update=True)
        current = bucket.quantity if bucket is not None else 0
        delta = new_quantity - current
        if delta == 0:
            raise NoAdjustmentNeededError(bucket_key, current)

        entry = self._ledger.apply_movement(
            bucket_key,
            MovementKind.adjustment_for(delta),
            abs(delta),
            actor_id,
            MovementLinks(reason=reason),
            allow_negative=True,
            expected_balance=current,
        )
        return AdjustmentResult(
            movement=MovementRecord.from_entry(entry),
            bucket_key=bucket_key,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            delta=delta,
            reason=reason,
        )
