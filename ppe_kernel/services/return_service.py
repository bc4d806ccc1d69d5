"""
ReturnService -- units coming back from workers, and undoing recent returns.

Responsibility:
    Marks delivered units RETURNED and credits stock by condition: GOOD to
    the AVAILABLE bucket, DAMAGED to the AWAITING_INSPECTION bucket of the
    same location and item type, LOST to nothing (written off).  Offers a
    best-effort batch variant, cancellation within a grace window, and
    read-only eligibility previews.

Architecture position:
    Kernel > Services.  Writes through LedgerService.  Never commits.

Invariants enforced:
    - Only SIGNED deliveries accept returns; PENDING_SIGNATURE and CANCELLED
      deliveries reject every item with DeliveryNotSignedError.
    - Each unit is credited at most once while RETURNED: one RETURN entry of
      quantity 1, linked to the delivery and the unit.
    - ``process_return`` and ``cancel_return`` are all-or-nothing.
    - ``process_returns_batch`` runs each item in its own SAVEPOINT: a
      domain error rolls back that item only and is reported; the other
      items stay applied.  Callers must not read batch success as "every
      item processed".

Failure modes:
    - DeliveryNotFoundError, DeliveryNotSignedError, InvalidItemStateError,
      CancellationWindowExpiredError, InsufficientStockError (cancelling a
      return whose credit was already consumed), MissingReasonError,
      EmptyRequestError.
"""

from collections.abc import Sequence
from datetime import timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ppe_kernel.domain.clock import Clock
from ppe_kernel.domain.dtos import (
    BatchItemError,
    BatchReturnItem,
    BatchReturnResult,
    EligibilityReport,
    MovementRecord,
    ReturnCancellationResult,
    ReturnedUnit,
    ReturnItem,
    ReturnResult,
    UnitEligibility,
)
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.domain.values import BucketKey, MovementLinks, ReturnCondition
from ppe_kernel.exceptions import (
    CancellationWindowExpiredError,
    DeliveryNotFoundError,
    DeliveryNotSignedError,
    EmptyRequestError,
    InvalidItemStateError,
    MissingActorError,
    MissingReasonError,
    PPEKernelError,
)
from ppe_kernel.logging_config import LogContext, get_logger
from ppe_kernel.models.balance import BalanceBucket
from ppe_kernel.models.delivery import (
    Delivery,
    DeliveryStatus,
    DeliveryUnit,
    DeliveryUnitStatus,
)
from ppe_kernel.models.ledger import LedgerEntry
from ppe_kernel.selectors.delivery_selector import DeliverySelector
from ppe_kernel.services.base import BaseService
from ppe_kernel.services.ledger_service import LedgerService

logger = get_logger("services.return")


class ReturnService(BaseService[DeliveryUnit]):
    """Return processing."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerService | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self._clock)
        self._deliveries = DeliverySelector(session)

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def process_return(
        self,
        delivery_id: UUID,
        items: Sequence[ReturnItem],
        actor_id: UUID,
    ) -> ReturnResult:
        """
        Return ``items`` of one delivery, all or nothing.

        Every item is validated before anything is written: the unit must
        belong to the delivery, appear once in the request, and be
        WITH_WORKER.

        Raises:
            DeliveryNotSignedError: Delivery is not SIGNED.
            InvalidItemStateError: First item that fails validation.
        """
        if actor_id is None:
            raise MissingActorError("process_return")
        if not items:
            raise EmptyRequestError("process_return")

        with LogContext.bind(delivery_id=delivery_id, actor_id=actor_id), self._unit_of_work():
            delivery = self._load_signed_delivery(delivery_id)
            units = self._units_by_id(delivery)

            seen: set[UUID] = set()
            for item in items:
                if item.unit_id in seen:
                    raise InvalidItemStateError(item.unit_id, "listed more than once in the request")
                seen.add(item.unit_id)
                self._check_returnable(units.get(item.unit_id), item.unit_id, delivery_id)

            credit_keys = self._credit_keys(units[i.unit_id] for i in items)
            self._ledger.lock_buckets(
                credit_keys[item.unit_id].with_condition(item.condition.credit_condition)
                for item in items
                if item.condition.credit_condition is not None
            )
            returned = [
                self._return_unit(delivery, units[item.unit_id], item.condition, item.reason, actor_id)
                for item in items
            ]

        return ReturnResult(
            delivery_id=delivery_id,
            returned=tuple(returned),
            progress=self._deliveries.return_progress(delivery_id),
        )

    def process_returns_batch(
        self,
        items: Sequence[BatchReturnItem],
        actor_id: UUID,
    ) -> BatchReturnResult:
        """
        Best-effort return of units across deliveries.

        Each item runs in its own SAVEPOINT.  Kernel errors on an item are
        recorded as ``(delivery_id, unit_id, code, message)`` and processing
        continues; any other exception propagates.
        """
        if actor_id is None:
            raise MissingActorError("process_returns_batch")
        if not items:
            raise EmptyRequestError("process_returns_batch")

        processed: list[ReturnedUnit] = []
        errors: list[BatchItemError] = []
        for item in items:
            try:
                with LogContext.bind(delivery_id=item.delivery_id), self.session.begin_nested():
                    delivery = self._load_signed_delivery(item.delivery_id)
                    unit = self._units_by_id(delivery).get(item.unit_id)
                    self._check_returnable(unit, item.unit_id, item.delivery_id)
                    processed.append(
                        self._return_unit(delivery, unit, item.condition, item.reason, actor_id)
                    )
            except PPEKernelError as exc:
                logger.warning(
                    "batch_return_item_failed",
                    extra={
                        "delivery_id": str(item.delivery_id),
                        "unit_id": str(item.unit_id),
                        "error_code": exc.code,
                    },
                )
                errors.append(
                    BatchItemError(
                        delivery_id=item.delivery_id,
                        unit_id=item.unit_id,
                        code=exc.code,
                        message=str(exc),
                    )
                )

        logger.info(
            "batch_return_completed",
            extra={"processed_count": len(processed), "error_count": len(errors)},
        )
        return BatchReturnResult(processed=tuple(processed), errors=tuple(errors))

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_return(
        self,
        delivery_id: UUID,
        unit_ids: Sequence[UUID],
        reason: str,
        actor_id: UUID,
        policy: StockPolicy,
    ) -> ReturnCancellationResult:
        """
        Put returned units back with the worker and reverse their credits.

        Allowed only within ``policy.return_cancellation_window_hours`` of
        each unit's return.  LOST returns have no credit to reverse.

        Raises:
            InvalidItemStateError: A unit is not RETURNED or not part of the
                delivery.
            CancellationWindowExpiredError: A unit was returned too long ago.
            InsufficientStockError: The credited stock has since been
                consumed and negative stock is off.
        """
        if actor_id is None:
            raise MissingActorError("cancel_return")
        if not reason or not reason.strip():
            raise MissingReasonError("cancel_return")
        if not unit_ids:
            raise EmptyRequestError("cancel_return")
        reason = reason.strip()

        with LogContext.bind(delivery_id=delivery_id, actor_id=actor_id), self._unit_of_work():
            delivery = self._load_delivery(delivery_id)
            units = self._units_by_id(delivery)
            targets = []
            for unit_id in dict.fromkeys(unit_ids):
                unit = units.get(unit_id)
                self._check_cancellable(unit, unit_id, delivery_id, policy)
                targets.append(unit)

            credits = [(unit, self._live_return_entry(unit.id)) for unit in targets]
            self._ledger.lock_buckets(
                BucketKey(e.bucket.location_id, e.bucket.item_type_id, e.bucket.condition)
                for _, e in credits
                if e is not None
            )

            reversals: list[MovementRecord] = []
            for unit, entry in credits:
                if entry is not None:
                    reversal = self._ledger.reverse_unit_movement(
                        entry.id,
                        actor_id,
                        allow_negative=policy.allow_negative_stock,
                        reason=reason,
                    )
                    reversals.append(MovementRecord.from_entry(reversal))
                unit.status = DeliveryUnitStatus.WITH_WORKER.value
                unit.returned_at = None
                unit.returned_by_id = None
                unit.return_condition = None
                unit.return_reason = None
                unit.updated_by_id = actor_id
            self.session.flush()

            logger.info(
                "return_cancelled",
                extra={"unit_count": len(targets), "reversal_count": len(reversals)},
            )

        return ReturnCancellationResult(
            delivery_id=delivery_id,
            restored_unit_ids=tuple(u.id for u in targets),
            reversals=tuple(reversals),
        )

    # ------------------------------------------------------------------
    # Eligibility previews (read-only)
    # ------------------------------------------------------------------

    def check_return_eligibility(
        self,
        delivery_id: UUID,
        unit_ids: Sequence[UUID] | None = None,
    ) -> EligibilityReport:
        delivery = self._get_delivery(delivery_id)
        units = self._units_by_id(delivery)
        blocking = None
        if delivery.status != DeliveryStatus.SIGNED:
            blocking = f"delivery is {delivery.status}, not SIGNED"

        report = []
        for unit_id in unit_ids if unit_ids is not None else list(units):
            if blocking is not None:
                report.append(UnitEligibility(unit_id, False, blocking))
                continue
            try:
                self._check_returnable(units.get(unit_id), unit_id, delivery_id)
            except InvalidItemStateError as exc:
                report.append(UnitEligibility(unit_id, False, exc.reason))
            else:
                report.append(UnitEligibility(unit_id, True))
        return EligibilityReport(delivery_id, tuple(report), blocking)

    def check_cancellation_eligibility(
        self,
        delivery_id: UUID,
        unit_ids: Sequence[UUID] | None,
        policy: StockPolicy,
    ) -> EligibilityReport:
        delivery = self._get_delivery(delivery_id)
        units = self._units_by_id(delivery)

        report = []
        for unit_id in unit_ids if unit_ids is not None else list(units):
            try:
                self._check_cancellable(units.get(unit_id), unit_id, delivery_id, policy)
            except InvalidItemStateError as exc:
                report.append(UnitEligibility(unit_id, False, exc.reason))
            except CancellationWindowExpiredError:
                report.append(UnitEligibility(unit_id, False, "cancellation window expired"))
            else:
                report.append(UnitEligibility(unit_id, True))
        return EligibilityReport(delivery_id, tuple(report))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _return_unit(
        self,
        delivery: Delivery,
        unit: DeliveryUnit,
        condition: ReturnCondition,
        reason: str | None,
        actor_id: UUID,
    ) -> ReturnedUnit:
        unit.status = DeliveryUnitStatus.RETURNED.value
        unit.returned_at = self._clock.now()
        unit.returned_by_id = actor_id
        unit.return_condition = condition.value
        unit.return_reason = reason
        unit.updated_by_id = actor_id
        self.session.flush()

        movement = None
        target = condition.credit_condition
        if target is not None:
            key = self._credit_keys([unit])[unit.id].with_condition(target)
            entry = self._ledger.apply_movement(
                key,
                MovementKind.RETURN,
                1,
                actor_id,
                MovementLinks(delivery_id=delivery.id, delivery_unit_id=unit.id, reason=reason),
            )
            movement = MovementRecord.from_entry(entry)

        logger.info(
            "unit_returned",
            extra={
                "delivery_id": str(delivery.id),
                "unit_id": str(unit.id),
                "condition": condition.value,
                "credited": movement is not None,
            },
        )
        return ReturnedUnit(
            delivery_id=delivery.id,
            unit_id=unit.id,
            condition=condition,
            movement=movement,
        )

    def _credit_keys(self, units) -> dict[UUID, BucketKey]:
        """Source bucket key of each unit (AVAILABLE at the issuing location)."""
        keys = {}
        for unit in units:
            source = self.session.get(BalanceBucket, unit.source_bucket_id)
            keys[unit.id] = BucketKey(source.location_id, unit.item_type_id, source.condition)
        return keys

    def _live_return_entry(self, unit_id: UUID) -> LedgerEntry | None:
        """The unit's RETURN entry that has not been reversed, if any."""
        reversed_ids = select(LedgerEntry.reversal_of_id).where(
            LedgerEntry.reversal_of_id.is_not(None)
        )
        return self.session.execute(
            select(LedgerEntry).where(
                LedgerEntry.delivery_unit_id == unit_id,
                LedgerEntry.kind == MovementKind.RETURN.value,
                LedgerEntry.id.not_in(reversed_ids),
            )
        ).scalar_one_or_none()

    @staticmethod
    def _check_returnable(unit: DeliveryUnit | None, unit_id: UUID, delivery_id: UUID) -> None:
        if unit is None:
            raise InvalidItemStateError(unit_id, f"not part of delivery {delivery_id}")
        if unit.status != DeliveryUnitStatus.WITH_WORKER:
            raise InvalidItemStateError(unit_id, "unit is not with the worker", unit.status)

    def _check_cancellable(
        self,
        unit: DeliveryUnit | None,
        unit_id: UUID,
        delivery_id: UUID,
        policy: StockPolicy,
    ) -> None:
        if unit is None:
            raise InvalidItemStateError(unit_id, f"not part of delivery {delivery_id}")
        if unit.status != DeliveryUnitStatus.RETURNED:
            raise InvalidItemStateError(unit_id, "unit has not been returned", unit.status)
        window = timedelta(hours=policy.return_cancellation_window_hours)
        if self._clock.now() - unit.returned_at > window:
            raise CancellationWindowExpiredError(
                unit_id, unit.returned_at, policy.return_cancellation_window_hours
            )

    @staticmethod
    def _units_by_id(delivery: Delivery) -> dict[UUID, DeliveryUnit]:
        return {unit.id: unit for unit in delivery.units}

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

    def _load_signed_delivery(self, delivery_id: UUID) -> Delivery:
        delivery = self._load_delivery(delivery_id)
        if delivery.status != DeliveryStatus.SIGNED:
            raise DeliveryNotSignedError(delivery_id, delivery.status)
        return delivery

    def _get_delivery(self, delivery_id: UUID) -> Delivery:
        delivery = self.session.get(Delivery, delivery_id, populate_existing=True)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery
