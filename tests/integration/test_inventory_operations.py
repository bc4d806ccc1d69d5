"""
End-to-end flows through InventoryOperations.

Every call goes through the transactional boundary: the policy is resolved
fresh from runtime settings, the kernel service runs, and the session is
committed or rolled back.
"""

import pytest

from ppe_kernel.domain.dtos import (
    BatchReturnItem,
    DeliveryLine,
    InventoryCount,
    ReturnItem,
    ReturnProgressStatus,
)
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketCondition, BucketKey
from ppe_kernel.exceptions import (
    EntryNotReversibleError,
    ForcedAdjustmentsDisabledError,
    InsufficientStockError,
    NoAdjustmentNeededError,
)
from ppe_kernel.models.delivery import DeliveryUnit, DeliveryUnitStatus
from ppe_kernel.models.movement_note import MovementNoteStatus, MovementNoteType
from ppe_kernel.services.settings_service import ALLOW_FORCED_ADJUSTMENTS, ALLOW_NEGATIVE_STOCK
from ppe_services.inventory_operations import InventoryOperations


@pytest.fixture(autouse=True)
def _committed_catalog(session, location, second_location, helmet, gloves, worker_record):
    """Catalog rows survive the rollback of a failed operation."""
    session.commit()


@pytest.fixture
def intake(operations, test_actor_id):
    def _intake(key: BucketKey, quantity: int):
        note = operations.create_note(
            MovementNoteType.INTAKE, test_actor_id, destination_location_id=key.location_id
        )
        operations.add_note_line(note.id, key.item_type_id, quantity, test_actor_id)
        return operations.conclude_note(note.id, test_actor_id)

    return _intake


class TestDeliveryAndReturnFlow:

    def test_intake_then_delivery(self, session, operations, intake, helmet_key, location, worker_record, test_actor_id):
        intake(helmet_key, 10)
        assert operations.balance(helmet_key) == 10

        delivery = operations.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 3)]
        )

        assert operations.balance(helmet_key) == 7
        assert len(delivery.unit_ids) == 3
        issues = operations.entries_for_delivery(delivery.delivery_id)
        assert [e.kind for e in issues] == [MovementKind.ISSUE] * 3
        units = [session.get(DeliveryUnit, u) for u in delivery.unit_ids]
        assert all(u.status == DeliveryUnitStatus.WITH_WORKER.value for u in units)

    def test_returns_by_condition(self, operations, intake, helmet_key, location, worker_record, test_actor_id):
        intake(helmet_key, 10)
        delivery = operations.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 3)]
        )
        operations.sign_delivery(delivery.delivery_id, test_actor_id)
        good, damaged, lost = delivery.unit_ids
        quarantine = helmet_key.with_condition(BucketCondition.AWAITING_INSPECTION)

        operations.process_return(delivery.delivery_id, [ReturnItem(good, "GOOD")], test_actor_id)
        assert operations.balance(helmet_key) == 8

        operations.process_return(delivery.delivery_id, [ReturnItem(damaged, "DAMAGED")], test_actor_id)
        assert operations.balance(quarantine) == 1

        result = operations.process_return(delivery.delivery_id, [ReturnItem(lost, "LOST")], test_actor_id)
        assert operations.balance(helmet_key) == 8
        assert operations.balance(quarantine) == 1
        assert result.progress.status == ReturnProgressStatus.FULLY_RETURNED

    def test_batch_commits_successful_items(
        self, operations, intake, helmet_key, location, worker_record, test_actor_id
    ):
        intake(helmet_key, 4)
        signed = operations.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 2)]
        )
        operations.sign_delivery(signed.delivery_id, test_actor_id)
        pending = operations.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 1)]
        )

        result = operations.process_returns_batch(
            [
                BatchReturnItem(signed.delivery_id, signed.unit_ids[0], "GOOD"),
                BatchReturnItem(pending.delivery_id, pending.unit_ids[0], "GOOD"),
            ],
            test_actor_id,
        )

        assert len(result.processed) == 1
        assert len(result.errors) == 1
        assert operations.balance(helmet_key) == 2
        assert operations.return_progress(signed.delivery_id).returned == 1

    def test_cancel_return_through_boundary(
        self, operations, intake, helmet_key, location, worker_record, test_actor_id
    ):
        intake(helmet_key, 2)
        delivery = operations.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 2)]
        )
        operations.sign_delivery(delivery.delivery_id, test_actor_id)
        operations.process_return(
            delivery.delivery_id, [ReturnItem(delivery.unit_ids[0], "GOOD")], test_actor_id
        )
        assert operations.check_cancellation_eligibility(delivery.delivery_id).eligible_unit_ids == (
            delivery.unit_ids[0],
        )

        operations.cancel_return(delivery.delivery_id, [delivery.unit_ids[0]], "mistake", test_actor_id)

        assert operations.balance(helmet_key) == 0
        assert operations.check_return_eligibility(delivery.delivery_id).all_eligible


class TestNoteFlow:

    def test_transfer_between_locations(
        self, operations, intake, helmet, helmet_key, location, second_location, test_actor_id
    ):
        intake(helmet_key, 5)
        destination = BucketKey(second_location.id, helmet.id)
        note = operations.create_note(
            MovementNoteType.TRANSFER,
            test_actor_id,
            source_location_id=location.id,
            destination_location_id=second_location.id,
        )
        operations.add_note_line(note.id, helmet.id, 5, test_actor_id)

        operations.conclude_note(note.id, test_actor_id)

        assert operations.balance(helmet_key) == 0
        assert operations.balance(destination) == 5
        entries = operations.entries_for_note(note.id)
        assert len(entries) == 2
        assert {e.movement_note_id for e in entries} == {note.id}

    def test_failed_disposal_is_rolled_back(
        self, operations, intake, helmet, helmet_key, location, test_actor_id, captured_logs
    ):
        intake(helmet_key, 2)
        note = operations.create_note(
            MovementNoteType.DISPOSAL, test_actor_id, source_location_id=location.id
        )
        operations.add_note_line(note.id, helmet.id, 5, test_actor_id)

        with pytest.raises(InsufficientStockError):
            operations.conclude_note(note.id, test_actor_id)

        assert operations.balance(helmet_key) == 2
        assert operations.entries_for_note(note.id) == []
        assert note.status == MovementNoteStatus.DRAFT.value
        assert any(r["message"] == "operation_rolled_back" for r in captured_logs())

    def test_reverse_movement(self, operations, intake, helmet_key, test_actor_id):
        result = intake(helmet_key, 6)

        reversal = operations.reverse_movement(result.movements[0].entry_id, test_actor_id, "wrong site")

        assert reversal.kind == MovementKind.REVERSAL_INTAKE
        assert operations.balance(helmet_key) == 0

    def test_delivery_entries_not_reversible_directly(
        self, session, operations, intake, helmet_key, location, worker_record, test_actor_id
    ):
        intake(helmet_key, 5)
        delivery = operations.create_delivery(
            worker_record.id, location.id, test_actor_id, [DeliveryLine(helmet_key, 2)]
        )
        operations.sign_delivery(delivery.delivery_id, test_actor_id)
        kept, returned = delivery.unit_ids
        operations.process_return(delivery.delivery_id, [ReturnItem(returned, "GOOD")], test_actor_id)

        for entry in operations.entries_for_delivery(delivery.delivery_id):
            with pytest.raises(EntryNotReversibleError):
                operations.reverse_movement(entry.entry_id, test_actor_id, "undo")

        assert operations.balance(helmet_key) == 4
        assert session.get(DeliveryUnit, kept).status == DeliveryUnitStatus.WITH_WORKER.value
        assert session.get(DeliveryUnit, returned).status == DeliveryUnitStatus.RETURNED.value


class TestAdjustmentFlow:

    def test_no_adjustment_needed(self, operations, intake, helmet_key, test_actor_id):
        intake(helmet_key, 50)
        operations.set_setting(ALLOW_FORCED_ADJUSTMENTS, True, test_actor_id)

        with pytest.raises(NoAdjustmentNeededError):
            operations.adjust_direct(helmet_key, 50, test_actor_id, "count")

        assert len(operations.entries_for_bucket(helmet_key)) == 1

    def test_setting_change_applies_to_next_call(self, operations, intake, helmet_key, test_actor_id):
        intake(helmet_key, 10)

        with pytest.raises(ForcedAdjustmentsDisabledError):
            operations.adjust_direct(helmet_key, 9, test_actor_id, "count")

        operations.set_setting(ALLOW_FORCED_ADJUSTMENTS, "true", test_actor_id)
        result = operations.adjust_direct(helmet_key, 9, test_actor_id, "count")

        assert result.balance_after == 9
        assert operations.current_policy().allow_forced_adjustments is True

    def test_negative_stock_setting_unlocks_disposal(
        self, operations, intake, helmet, helmet_key, location, test_actor_id
    ):
        intake(helmet_key, 1)
        operations.set_setting(ALLOW_NEGATIVE_STOCK, True, test_actor_id)
        note = operations.create_note(
            MovementNoteType.DISPOSAL, test_actor_id, source_location_id=location.id
        )
        operations.add_note_line(note.id, helmet.id, 3, test_actor_id)

        operations.conclude_note(note.id, test_actor_id)

        assert operations.balance(helmet_key) == -2

    def test_environment_change_applies_to_next_call(self, session, deterministic_clock, monkeypatch):
        monkeypatch.delenv("PPE_ALLOW_NEGATIVE_STOCK", raising=False)
        unpinned = InventoryOperations(session, deterministic_clock)
        assert unpinned.current_policy().allow_negative_stock is False

        monkeypatch.setenv("PPE_ALLOW_NEGATIVE_STOCK", "true")

        assert unpinned.current_policy().allow_negative_stock is True

    def test_runtime_setting_beats_environment(self, session, deterministic_clock, monkeypatch, test_actor_id):
        monkeypatch.setenv("PPE_ALLOW_NEGATIVE_STOCK", "true")
        unpinned = InventoryOperations(session, deterministic_clock)

        unpinned.set_setting(ALLOW_NEGATIVE_STOCK, False, test_actor_id)

        assert unpinned.current_policy().allow_negative_stock is False

    def test_pinned_defaults_ignore_environment(self, operations, monkeypatch):
        monkeypatch.setenv("PPE_ALLOW_NEGATIVE_STOCK", "true")

        assert operations.current_policy().allow_negative_stock is False

    def test_reconciliation_and_summary(
        self, operations, intake, helmet_key, gloves_key, test_actor_id
    ):
        intake(helmet_key, 10)
        intake(gloves_key, 10)
        operations.set_setting(ALLOW_FORCED_ADJUSTMENTS, True, test_actor_id)
        counts = [InventoryCount(helmet_key, 12), InventoryCount(gloves_key, 9)]

        assert len(operations.assess_divergences(counts)) == 2
        result = operations.reconcile_inventory(counts, test_actor_id)

        assert result.net_variance == 1
        summary = operations.adjustment_summary(location_id=helmet_key.location_id)
        assert (summary.total_in, summary.total_out) == (2, 1)
        assert operations.simulate_adjustment(helmet_key, 12).delta == 0
