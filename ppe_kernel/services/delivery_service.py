"""
DeliveryService -- hand-off of individually tracked units to a worker.

Responsibility:
    Creates a delivery by expanding every requested quantity into one
    DeliveryUnit per physical item, each with its own ISSUE ledger entry.
    Signs pending deliveries and cancels recent ones by reversing their
    ISSUE entries.

Architecture position:
    Kernel > Services.  Writes through LedgerService.  Never commits.

Invariants enforced:
    - A line of quantity N yields exactly N units (quantity 1 each) and
      exactly N ISSUE entries; never a single entry for N units.
    - Deliveries always consume physical stock from AVAILABLE buckets at the
      delivery location; the negative-stock switch does not apply.
    - return_deadline = delivery date + item-type shelf life, fixed at
      creation (NULL when the item type has no fixed life).
    - Creation and cancellation are all-or-nothing.

Failure modes:
    - WorkerRecordNotFoundError / WorkerRecordInactiveError.
    - BucketNotAvailableError, InvalidLocationError, ItemTypeInactiveError,
      InsufficientStockError on lines.
    - DeliveryNotPendingError on signing.
    - DeliveryAlreadyCancelledError, DeliveryHasReturnsError,
      CancellationWindowExpiredError on cancellation.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ppe_kernel.domain.clock import Clock
from ppe_kernel.domain.dtos import (
    DeliveryCancellationResult,
    DeliveryLine,
    DeliveryResult,
    MovementRecord,
)
from ppe_kernel.domain.ids import DELIVERY_PREFIX, UNIT_PREFIX, IdGenerator, UUIDIdGenerator
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.domain.values import BucketCondition, BucketKey, MovementLinks
from ppe_kernel.exceptions import (
    BucketNotAvailableError,
    CancellationWindowExpiredError,
    DeliveryAlreadyCancelledError,
    DeliveryHasReturnsError,
    DeliveryNotFoundError,
    DeliveryNotPendingError,
    EmptyRequestError,
    InsufficientStockError,
    InvalidLocationError,
    InvalidQuantityError,
    ItemTypeInactiveError,
    ItemTypeNotFoundError,
    LocationNotFoundError,
    MissingActorError,
    MissingReasonError,
    WorkerRecordInactiveError,
    WorkerRecordNotFoundError,
)
from ppe_kernel.logging_config import LogContext, get_logger
from ppe_kernel.models.catalog import ItemType, StorageLocation, WorkerRecord
from ppe_kernel.models.delivery import (
    Delivery,
    DeliveryStatus,
    DeliveryUnit,
    DeliveryUnitStatus,
)
from ppe_kernel.models.ledger import LedgerEntry
from ppe_kernel.services.base import BaseService
from ppe_kernel.services.ledger_service import LedgerService

logger = get_logger("services.delivery")


class DeliveryService(BaseService[Delivery]):
    """
    Delivery creation, signing and cancellation.

    Contract:
        ``create_delivery`` returns the delivery code, the ids of every
        expanded unit in creation order and one ISSUE movement per unit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerService | None = None,
        id_generator: IdGenerator | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self._clock)
        self._ids = id_generator or UUIDIdGenerator()

    def create_delivery(
        self,
        worker_record_id: UUID,
        location_id: UUID,
        responsible_actor_id: UUID,
        lines: Sequence[DeliveryLine],
        delivery_date: datetime | None = None,
    ) -> DeliveryResult:
        """
        Issue the requested units to a worker.

        Preconditions:
            - The worker record exists and is ACTIVE.
            - Every line targets an AVAILABLE bucket at ``location_id`` whose
              item type is active, and the bucket holds the requested
              quantity (summed across lines sharing a bucket).

        Raises:
            InsufficientStockError: A bucket cannot cover its lines; nothing
                is written.
        """
        if responsible_actor_id is None:
            raise MissingActorError("create_delivery")
        if not lines:
            raise EmptyRequestError("create_delivery")

        requested: dict[BucketKey, int] = defaultdict(int)
        for line in lines:
            if line.quantity <= 0:
                raise InvalidQuantityError(line.quantity, "delivery lines require quantity > 0")
            if line.bucket_key.condition != BucketCondition.AVAILABLE:
                raise BucketNotAvailableError(line.bucket_key, line.bucket_key.condition.value)
            if line.bucket_key.location_id != location_id:
                raise InvalidLocationError(
                    f"bucket {line.bucket_key} is not at delivery location {location_id}"
                )
            requested[line.bucket_key] += line.quantity

        self._check_worker_record(worker_record_id)
        if self.session.get(StorageLocation, location_id) is None:
            raise LocationNotFoundError(location_id)
        item_types = {key.item_type_id: self._active_item_type(key.item_type_id) for key in requested}

        issued_at = delivery_date or self._clock.now()

        with self._unit_of_work():
            locked = self._ledger.lock_buckets(requested)
            for key, quantity in requested.items():
                bucket = locked.get(key)
                available = bucket.quantity if bucket is not None else 0
                if available < quantity:
                    raise InsufficientStockError(key, quantity, available)

            delivery = Delivery(
                code=self._ids.new_code(DELIVERY_PREFIX),
                worker_record_id=worker_record_id,
                location_id=location_id,
                responsible_actor_id=responsible_actor_id,
                delivery_date=issued_at,
                status=DeliveryStatus.PENDING_SIGNATURE.value,
                created_by_id=responsible_actor_id,
            )
            self.session.add(delivery)
            self.session.flush()

            with LogContext.bind(delivery_id=delivery.id, actor_id=responsible_actor_id):
                unit_ids, movements = self._expand_units(
                    delivery, lines, locked, item_types, issued_at, responsible_actor_id
                )

        logger.info(
            "delivery_created",
            extra={
                "delivery_id": str(delivery.id),
                "code": delivery.code,
                "worker_record_id": str(worker_record_id),
                "unit_count": len(unit_ids),
            },
        )
        return DeliveryResult(
            delivery_id=delivery.id,
            code=delivery.code,
            status=delivery.status,
            unit_ids=tuple(unit_ids),
            movements=tuple(movements),
        )

    def _expand_units(
        self,
        delivery: Delivery,
        lines: Sequence[DeliveryLine],
        locked: dict,
        item_types: dict[UUID, ItemType],
        issued_at: datetime,
        actor_id: UUID,
    ) -> tuple[list[UUID], list[MovementRecord]]:
        unit_ids: list[UUID] = []
        movements: list[MovementRecord] = []
        sequence = 0
        for line in lines:
            shelf_life = item_types[line.bucket_key.item_type_id].shelf_life_days
            deadline = issued_at + timedelta(days=shelf_life) if shelf_life else None
            for _ in range(line.quantity):
                sequence += 1
                unit = DeliveryUnit(
                    delivery_id=delivery.id,
                    code=self._ids.new_code(UNIT_PREFIX),
                    sequence=sequence,
                    source_bucket_id=locked[line.bucket_key].id,
                    item_type_id=line.bucket_key.item_type_id,
                    quantity=1,
                    status=DeliveryUnitStatus.WITH_WORKER.value,
                    return_deadline=deadline,
                    created_by_id=actor_id,
                )
                self.session.add(unit)
                # The ISSUE entry references the unit row
                self.session.flush()

                entry = self._ledger.apply_movement(
                    line.bucket_key,
                    MovementKind.ISSUE,
                    1,
                    actor_id,
                    MovementLinks(delivery_id=delivery.id, delivery_unit_id=unit.id),
                )
                unit_ids.append(unit.id)
                movements.append(MovementRecord.from_entry(entry))
        return unit_ids, movements

    def sign_delivery(
        self,
        delivery_id: UUID,
        actor_id: UUID,
        signature_ref: str | None = None,
    ) -> Delivery:
        """PENDING_SIGNATURE -> SIGNED.  Returns become possible afterwards."""
        if actor_id is None:
            raise MissingActorError("sign_delivery")

        with self._unit_of_work():
            delivery = self._load_delivery(delivery_id)
            if delivery.status != DeliveryStatus.PENDING_SIGNATURE:
                raise DeliveryNotPendingError(delivery_id, delivery.status)
            self._check_worker_record(delivery.worker_record_id)

            delivery.status = DeliveryStatus.SIGNED.value
            delivery.signed_at = self._clock.now()
            delivery.signed_by_id = actor_id
            delivery.signature_ref = signature_ref
            delivery.updated_by_id = actor_id
            self.session.flush()

        logger.info("delivery_signed", extra={"delivery_id": str(delivery_id), "code": delivery.code})
        return delivery

    def cancel_delivery(
        self,
        delivery_id: UUID,
        actor_id: UUID,
        reason: str,
        policy: StockPolicy,
    ) -> DeliveryCancellationResult:
        """
        Undo a recent delivery: reverse every ISSUE entry and cancel its units.

        Raises:
            DeliveryAlreadyCancelledError: Already cancelled.
            DeliveryHasReturnsError: Some unit has been returned.
            CancellationWindowExpiredError: Older than the cancellation window.
        """
        if actor_id is None:
            raise MissingActorError("cancel_delivery")
        if not reason or not reason.strip():
            raise MissingReasonError("cancel_delivery")

        with LogContext.bind(delivery_id=delivery_id, actor_id=actor_id), self._unit_of_work():
            delivery = self._load_delivery(delivery_id)
            if delivery.status == DeliveryStatus.CANCELLED:
                raise DeliveryAlreadyCancelledError(delivery_id)

            returned = [u for u in delivery.units if u.status == DeliveryUnitStatus.RETURNED]
            if returned:
                raise DeliveryHasReturnsError(delivery_id, len(returned))

            window = timedelta(hours=policy.delivery_cancellation_window_hours)
            if self._clock.now() - delivery.delivery_date > window:
                raise CancellationWindowExpiredError(
                    delivery_id, delivery.delivery_date, policy.delivery_cancellation_window_hours
                )

            issues = self.session.execute(
                select(LedgerEntry).where(
                    LedgerEntry.delivery_id == delivery.id,
                    LedgerEntry.kind == MovementKind.ISSUE.value,
                )
            ).scalars().all()
            self._ledger.lock_buckets(
                BucketKey(e.bucket.location_id, e.bucket.item_type_id, e.bucket.condition)
                for e in issues
            )
            reversals = [
                MovementRecord.from_entry(
                    self._ledger.reverse_unit_movement(entry.id, actor_id, reason=reason.strip())
                )
                for entry in issues
            ]

            now = self._clock.now()
            for unit in delivery.units:
                unit.status = DeliveryUnitStatus.CANCELLED.value
                unit.updated_by_id = actor_id
            delivery.status = DeliveryStatus.CANCELLED.value
            delivery.cancelled_at = now
            delivery.cancellation_reason = reason.strip()
            delivery.updated_by_id = actor_id
            self.session.flush()

            logger.info(
                "delivery_cancelled",
                extra={"code": delivery.code, "reversal_count": len(reversals)},
            )

        return DeliveryCancellationResult(
            delivery_id=delivery.id,
            cancelled_unit_ids=tuple(u.id for u in delivery.units),
            reversals=tuple(reversals),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_delivery(self, delivery_id: UUID) -> Delivery:
        delivery = self.session.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    def _check_worker_record(self, worker_record_id: UUID) -> WorkerRecord:
        record = self.session.get(WorkerRecord, worker_record_id)
        if record is None:
            raise WorkerRecordNotFoundError(worker_record_id)
        if not record.is_active:
            raise WorkerRecordInactiveError(worker_record_id, record.status)
        return record

    def _active_item_type(self, item_type_id: UUID) -> ItemType:
        item_type = self.session.get(ItemType, item_type_id)
        if item_type is None:
            raise ItemTypeNotFoundError(item_type_id)
        if not item_type.is_active:
            raise ItemTypeInactiveError(item_type_id)
        return item_type
