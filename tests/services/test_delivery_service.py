"""
Tests for DeliveryService: unit expansion, signing and cancellation.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from ppe_kernel.domain.dtos import DeliveryLine, ReturnItem
from ppe_kernel.domain.ids import is_valid_short_code
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketCondition
from ppe_kernel.exceptions import (
    BucketNotAvailableError,
    CancellationWindowExpiredError,
    DeliveryAlreadyCancelledError,
    DeliveryHasReturnsError,
    DeliveryNotPendingError,
    EmptyRequestError,
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidLocationError,
    InvalidQuantityError,
    MissingReasonError,
    WorkerRecordInactiveError,
    WorkerRecordNotFoundError,
)
from ppe_kernel.models.delivery import Delivery, DeliveryStatus, DeliveryUnit, DeliveryUnitStatus


@pytest.fixture
def deliver(delivery_service, location, worker_record, test_actor_id):
    def _deliver(*lines, worker_id=None):
        return delivery_service.create_delivery(
            worker_id or worker_record.id,
            location.id,
            test_actor_id,
            [DeliveryLine(key, qty) for key, qty in lines],
        )

    return _deliver


class TestCreateDelivery:

    def test_each_unit_gets_its_own_issue(
        self, session, deliver, balances, ledger_reads, helmet_key, gloves_key, stock
    ):
        stock(helmet_key, 10)
        stock(gloves_key, 5)

        result = deliver((helmet_key, 3), (gloves_key, 2))

        assert result.status == DeliveryStatus.PENDING_SIGNATURE.value
        assert len(result.unit_ids) == 5
        assert len(result.movements) == 5
        assert all(m.kind == MovementKind.ISSUE and m.quantity == 1 for m in result.movements)
        assert [m.delivery_unit_id for m in result.movements] == list(result.unit_ids)
        assert balances.current_quantity(helmet_key) == 7
        assert balances.current_quantity(gloves_key) == 3
        assert len(ledger_reads.entries_for_delivery(result.delivery_id, MovementKind.ISSUE)) == 5

        units = [session.get(DeliveryUnit, unit_id) for unit_id in result.unit_ids]
        assert [u.sequence for u in units] == [1, 2, 3, 4, 5]
        assert all(u.quantity == 1 for u in units)
        assert all(u.status == DeliveryUnitStatus.WITH_WORKER.value for u in units)

    def test_short_codes(self, deliver, helmet_key, stock):
        stock(helmet_key, 2)

        result = deliver((helmet_key, 2))

        assert is_valid_short_code(result.code, "E")

    def test_return_deadline_from_shelf_life(
        self, session, deliver, helmet_key, gloves_key, stock, deterministic_clock
    ):
        stock(helmet_key, 1)
        stock(gloves_key, 1)

        result = deliver((helmet_key, 1), (gloves_key, 1))

        helmet_unit, gloves_unit = (session.get(DeliveryUnit, u) for u in result.unit_ids)
        assert helmet_unit.return_deadline == deterministic_clock.now() + timedelta(days=180)
        assert gloves_unit.return_deadline is None

    def test_explicit_delivery_date(
        self, session, delivery_service, location, worker_record, helmet_key, stock,
        deterministic_clock, test_actor_id,
    ):
        stock(helmet_key, 1)
        issued = deterministic_clock.now() - timedelta(days=10)

        result = delivery_service.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 1)],
            delivery_date=issued,
        )

        unit = session.get(DeliveryUnit, result.unit_ids[0])
        assert unit.return_deadline == issued + timedelta(days=180)

    def test_lines_on_same_bucket_are_summed(self, deliver, balances, helmet_key, stock):
        stock(helmet_key, 3)

        with pytest.raises(InsufficientStockError) as exc_info:
            deliver((helmet_key, 2), (helmet_key, 2))

        assert exc_info.value.requested == 4
        assert balances.current_quantity(helmet_key) == 3

    def test_insufficient_stock_leaves_no_trace(
        self, session, deliver, balances, helmet_key, gloves_key, stock
    ):
        stock(helmet_key, 5)
        stock(gloves_key, 1)

        with pytest.raises(InsufficientStockError):
            deliver((helmet_key, 2), (gloves_key, 2))

        assert balances.current_quantity(helmet_key) == 5
        assert session.query(Delivery).count() == 0

    def test_negative_stock_switch_does_not_apply(self, deliver, helmet_key):
        with pytest.raises(InsufficientStockError):
            deliver((helmet_key, 1))

    def test_awaiting_inspection_bucket_rejected(self, deliver, helmet_key, stock):
        quarantine = helmet_key.with_condition(BucketCondition.AWAITING_INSPECTION)

        with pytest.raises(BucketNotAvailableError):
            deliver((quarantine, 1))

    def test_bucket_at_other_location_rejected(self, deliver, second_location, helmet):
        from ppe_kernel.domain.values import BucketKey

        with pytest.raises(InvalidLocationError):
            deliver((BucketKey(second_location.id, helmet.id), 1))

    def test_zero_quantity_rejected(self, deliver, helmet_key):
        with pytest.raises(InvalidQuantityError):
            deliver((helmet_key, 0))

    def test_empty_lines_rejected(self, deliver):
        with pytest.raises(EmptyRequestError):
            deliver()

    def test_inactive_worker_rejected(self, deliver, inactive_worker_record, helmet_key, stock):
        stock(helmet_key, 1)

        with pytest.raises(WorkerRecordInactiveError):
            deliver((helmet_key, 1), worker_id=inactive_worker_record.id)

    def test_unknown_worker_rejected(self, deliver, helmet_key, stock):
        stock(helmet_key, 1)

        with pytest.raises(WorkerRecordNotFoundError):
            deliver((helmet_key, 1), worker_id=uuid4())


class TestSignDelivery:

    def test_sign(self, deliver, delivery_service, helmet_key, stock, test_actor_id, deterministic_clock):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))

        delivery = delivery_service.sign_delivery(result.delivery_id, test_actor_id, "sig-0091")

        assert delivery.status == DeliveryStatus.SIGNED.value
        assert delivery.signed_at == deterministic_clock.now()
        assert delivery.signature_ref == "sig-0091"

    def test_sign_twice_rejected(self, deliver, delivery_service, helmet_key, stock, test_actor_id):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))
        delivery_service.sign_delivery(result.delivery_id, test_actor_id)

        with pytest.raises(DeliveryNotPendingError):
            delivery_service.sign_delivery(result.delivery_id, test_actor_id)


class TestCancelDelivery:

    def test_cancel_restores_stock(
        self, session, deliver, delivery_service, balances, ledger_reads, helmet_key, stock,
        default_policy, test_actor_id,
    ):
        stock(helmet_key, 4)
        result = deliver((helmet_key, 3))

        cancellation = delivery_service.cancel_delivery(
            result.delivery_id, test_actor_id, "wrong size", default_policy
        )

        assert len(cancellation.reversals) == 3
        assert all(r.kind == MovementKind.REVERSAL_ISSUE for r in cancellation.reversals)
        assert balances.current_quantity(helmet_key) == 4
        delivery = session.get(Delivery, result.delivery_id)
        assert delivery.status == DeliveryStatus.CANCELLED.value
        assert delivery.cancellation_reason == "wrong size"
        assert all(u.status == DeliveryUnitStatus.CANCELLED.value for u in delivery.units)
        # Original ISSUE entries are untouched
        assert len(ledger_reads.entries_for_delivery(result.delivery_id, MovementKind.ISSUE)) == 3

    def test_cancel_signed_delivery(
        self, deliver, delivery_service, balances, helmet_key, stock, default_policy, test_actor_id
    ):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))
        delivery_service.sign_delivery(result.delivery_id, test_actor_id)

        delivery_service.cancel_delivery(result.delivery_id, test_actor_id, "duplicate", default_policy)

        assert balances.current_quantity(helmet_key) == 1

    def test_window_expired(
        self, deliver, delivery_service, helmet_key, stock, default_policy, test_actor_id, deterministic_clock
    ):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))
        deterministic_clock.advance_hours(default_policy.delivery_cancellation_window_hours + 1)

        with pytest.raises(CancellationWindowExpiredError):
            delivery_service.cancel_delivery(result.delivery_id, test_actor_id, "late", default_policy)

    def test_cancel_twice_rejected(
        self, deliver, delivery_service, helmet_key, stock, default_policy, test_actor_id
    ):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))
        delivery_service.cancel_delivery(result.delivery_id, test_actor_id, "dup", default_policy)

        with pytest.raises(DeliveryAlreadyCancelledError):
            delivery_service.cancel_delivery(result.delivery_id, test_actor_id, "dup", default_policy)

    def test_reason_required(self, deliver, delivery_service, helmet_key, stock, default_policy, test_actor_id):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))

        with pytest.raises(MissingReasonError):
            delivery_service.cancel_delivery(result.delivery_id, test_actor_id, " ", default_policy)

    def test_delivery_with_returns_rejected(
        self, deliver, delivery_service, return_service, helmet_key, stock, default_policy, test_actor_id
    ):
        stock(helmet_key, 2)
        result = deliver((helmet_key, 2))
        delivery_service.sign_delivery(result.delivery_id, test_actor_id)
        return_service.process_return(
            result.delivery_id, [ReturnItem(result.unit_ids[0], "GOOD")], test_actor_id
        )

        with pytest.raises(DeliveryHasReturnsError):
            delivery_service.cancel_delivery(result.delivery_id, test_actor_id, "oops", default_policy)

    def test_cancelled_delivery_is_frozen(
        self, session, deliver, delivery_service, helmet_key, stock, default_policy, test_actor_id
    ):
        stock(helmet_key, 1)
        result = deliver((helmet_key, 1))
        delivery_service.cancel_delivery(result.delivery_id, test_actor_id, "dup", default_policy)

        delivery = session.get(Delivery, result.delivery_id)
        delivery.signature_ref = "late signature"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
