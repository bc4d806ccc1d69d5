"""
Tests for best-effort batch returns.

Each item runs in its own savepoint: a failing item leaves no trace while
its neighbours stay applied.
"""

from uuid import uuid4

import pytest

from ppe_kernel.domain.dtos import BatchReturnItem, DeliveryLine
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketCondition, ReturnCondition
from ppe_kernel.exceptions import EmptyRequestError
from ppe_kernel.models.delivery import DeliveryUnit, DeliveryUnitStatus


@pytest.fixture
def two_deliveries(delivery_service, location, worker_record, helmet_key, gloves_key, stock, test_actor_id):
    """One signed helmet delivery (2 units) and one unsigned gloves delivery (1 unit)."""
    stock(helmet_key, 5)
    stock(gloves_key, 5)
    signed = delivery_service.create_delivery(
        worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 2)]
    )
    delivery_service.sign_delivery(signed.delivery_id, test_actor_id)
    pending = delivery_service.create_delivery(
        worker_record.id, location.id, test_actor_id, [DeliveryLine(gloves_key, 1)]
    )
    return signed, pending


class TestProcessReturnsBatch:

    def test_mixed_batch_keeps_successes(
        self, session, return_service, balances, ledger_reads, two_deliveries,
        helmet_key, gloves_key, test_actor_id,
    ):
        signed, pending = two_deliveries
        first, second = signed.unit_ids
        stranger = uuid4()

        result = return_service.process_returns_batch(
            [
                BatchReturnItem(signed.delivery_id, first, "GOOD"),
                BatchReturnItem(pending.delivery_id, pending.unit_ids[0], "GOOD"),
                BatchReturnItem(signed.delivery_id, stranger, "GOOD"),
                BatchReturnItem(signed.delivery_id, second, "DAMAGED"),
            ],
            test_actor_id,
        )

        assert [p.unit_id for p in result.processed] == [first, second]
        assert [(e.unit_id, e.code) for e in result.errors] == [
            (pending.unit_ids[0], "DELIVERY_NOT_SIGNED"),
            (stranger, "INVALID_ITEM_STATE"),
        ]
        assert not result.is_complete
        assert result.delivery_ids == (signed.delivery_id,)

        assert balances.current_quantity(helmet_key) == 4
        assert balances.current_quantity(helmet_key.with_condition(BucketCondition.AWAITING_INSPECTION)) == 1
        assert balances.current_quantity(gloves_key) == 4
        assert ledger_reads.entries_for_delivery(pending.delivery_id, MovementKind.RETURN) == []
        assert session.get(DeliveryUnit, pending.unit_ids[0]).status == DeliveryUnitStatus.WITH_WORKER.value

    def test_repeated_unit_fails_second_time(self, return_service, balances, two_deliveries, helmet_key, test_actor_id):
        signed, _ = two_deliveries
        unit_id = signed.unit_ids[0]

        result = return_service.process_returns_batch(
            [
                BatchReturnItem(signed.delivery_id, unit_id, "GOOD"),
                BatchReturnItem(signed.delivery_id, unit_id, "GOOD"),
            ],
            test_actor_id,
        )

        assert len(result.processed) == 1
        assert [e.code for e in result.errors] == ["INVALID_ITEM_STATE"]
        assert balances.current_quantity(helmet_key) == 4

    def test_unknown_delivery_reported(self, return_service, test_actor_id):
        result = return_service.process_returns_batch(
            [BatchReturnItem(uuid4(), uuid4(), "LOST")], test_actor_id
        )

        assert result.processed == ()
        assert result.errors[0].code == "DELIVERY_NOT_FOUND"

    def test_all_good_batch_is_complete(self, return_service, two_deliveries, test_actor_id):
        signed, _ = two_deliveries

        result = return_service.process_returns_batch(
            [BatchReturnItem(signed.delivery_id, u, "LOST") for u in signed.unit_ids],
            test_actor_id,
        )

        assert result.is_complete
        assert all(p.movement is None for p in result.processed)

    def test_unsigned_delivery_rejects_every_condition(
        self, session, return_service, delivery_service, balances, location, worker_record,
        helmet_key, stock, test_actor_id,
    ):
        stock(helmet_key, 3)
        pending = delivery_service.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 3)]
        )
        conditions = list(ReturnCondition)

        result = return_service.process_returns_batch(
            [
                BatchReturnItem(pending.delivery_id, unit_id, condition)
                for unit_id, condition in zip(pending.unit_ids, conditions)
            ],
            test_actor_id,
        )

        assert result.processed == ()
        assert [(e.unit_id, e.code) for e in result.errors] == [
            (unit_id, "DELIVERY_NOT_SIGNED") for unit_id in pending.unit_ids
        ]
        assert balances.current_quantity(helmet_key) == 0
        assert balances.current_quantity(helmet_key.with_condition(BucketCondition.AWAITING_INSPECTION)) == 0
        for unit_id in pending.unit_ids:
            assert session.get(DeliveryUnit, unit_id).status == DeliveryUnitStatus.WITH_WORKER.value

    def test_empty_batch_rejected(self, return_service, test_actor_id):
        with pytest.raises(EmptyRequestError):
            return_service.process_returns_batch([], test_actor_id)

    def test_failures_are_logged(self, return_service, two_deliveries, test_actor_id, captured_logs):
        signed, pending = two_deliveries

        return_service.process_returns_batch(
            [
                BatchReturnItem(signed.delivery_id, signed.unit_ids[0], "GOOD"),
                BatchReturnItem(pending.delivery_id, pending.unit_ids[0], "GOOD"),
            ],
            test_actor_id,
        )

        logs = captured_logs()
        failed = [r for r in logs if r["message"] == "batch_return_item_failed"]
        summary = [r for r in logs if r["message"] == "batch_return_completed"]
        assert [r["error_code"] for r in failed] == ["DELIVERY_NOT_SIGNED"]
        assert summary[0]["processed_count"] == 1
        assert summary[0]["error_count"] == 1
