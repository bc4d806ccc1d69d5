"""
Inventory Operations (``ppe_services.inventory_operations``).

Responsibility
--------------
The boundary every caller goes through: one public method per inventory
operation.  Each method resolves the current stock policy, invokes the
kernel services and owns its transaction.  It contains no business rules
of its own.

Architecture
------------
Layer: **Services** -- stateful orchestration wrapper above ``ppe_kernel``.

1. Re-reads the policy at the start of every call: file/environment
   defaults from ``ppe_config`` overlaid with ``runtime_settings`` rows.
   A changed switch applies to the next call without a restart.
2. Calls the kernel service, which works inside its own SAVEPOINT.
3. Commits on success; rolls back and re-raises on failure.

Invariants
----------
- Each public write method owns its transaction boundary.
- Batch returns commit whatever items succeeded; the failed items are in
  the result's error list and left no trace.
- Read methods never commit.

Usage::

    ops = InventoryOperations(session)
    result = ops.conclude_note(note_id, actor_id)
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ppe_config import get_policy_defaults
from ppe_kernel.db.immutability import register_immutability_listeners
from ppe_kernel.domain.clock import Clock, SystemClock
from ppe_kernel.domain.dtos import (
    AdjustmentPreview,
    AdjustmentResult,
    AdjustmentSummary,
    BatchReturnItem,
    BatchReturnResult,
    BucketBalance,
    DeliveryCancellationResult,
    DeliveryLine,
    DeliveryResult,
    Divergence,
    EligibilityReport,
    InventoryCount,
    MovementRecord,
    NoteConclusionResult,
    ReconciliationResult,
    ReturnCancellationResult,
    ReturnItem,
    ReturnProgress,
    ReturnResult,
)
from ppe_kernel.domain.ids import IdGenerator
from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.domain.values import BucketKey
from ppe_kernel.logging_config import LogContext, get_logger
from ppe_kernel.models.delivery import Delivery
from ppe_kernel.models.movement_note import MovementNote, MovementNoteLine, MovementNoteType
from ppe_kernel.models.setting import RuntimeSetting
from ppe_kernel.selectors.balance_selector import BalanceSelector
from ppe_kernel.selectors.delivery_selector import DeliverySelector
from ppe_kernel.selectors.ledger_selector import LedgerSelector
from ppe_kernel.services.adjustment_service import AdjustmentService
from ppe_kernel.services.delivery_service import DeliveryService
from ppe_kernel.services.ledger_service import LedgerService
from ppe_kernel.services.movement_note_service import MovementNoteService
from ppe_kernel.services.return_service import ReturnService
from ppe_kernel.services.settings_service import SettingsService

logger = get_logger("operations")


class InventoryOperations:
    """
    Transactional facade over the PPE kernel.

    Args:
        session: Session this facade commits and rolls back.
        clock: Time source shared by every kernel service.
        id_generator: Code generator for deliveries and units.
        policy_defaults: Fixed policy defaults.  When omitted, ``ppe_config``
            is re-read (file and environment) on every call.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
        policy_defaults: StockPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._pinned_defaults = policy_defaults
        register_immutability_listeners()

        ledger = LedgerService(session, self._clock)
        self._ledger = ledger
        self._notes = MovementNoteService(session, self._clock, ledger=ledger)
        self._adjustments = AdjustmentService(session, self._clock, ledger=ledger)
        self._deliveries = DeliveryService(session, self._clock, ledger=ledger, id_generator=id_generator)
        self._returns = ReturnService(session, self._clock, ledger=ledger)
        self._settings = SettingsService(session)

        self._balances = BalanceSelector(session)
        self._ledger_reads = LedgerSelector(session)
        self._delivery_reads = DeliverySelector(session)

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str, actor_id: UUID | None = None) -> Iterator[None]:
        with LogContext.bind(actor_id=actor_id):
            try:
                yield
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "operation_rolled_back",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise

    def current_policy(self) -> StockPolicy:
        """Defaults overlaid with the runtime settings as of now."""
        defaults = self._pinned_defaults or get_policy_defaults()
        return self._settings.resolve(defaults)

    # ------------------------------------------------------------------
    # Movement notes
    # ------------------------------------------------------------------

    def create_note(
        self,
        note_type: MovementNoteType | str,
        actor_id: UUID,
        source_location_id: UUID | None = None,
        destination_location_id: UUID | None = None,
        remarks: str | None = None,
    ) -> MovementNote:
        with self._transaction("create_note", actor_id):
            return self._notes.create_note(
                note_type, actor_id, source_location_id, destination_location_id, remarks
            )

    def add_note_line(
        self, note_id: UUID, item_type_id: UUID, quantity: int, actor_id: UUID
    ) -> MovementNoteLine:
        with self._transaction("add_note_line", actor_id):
            return self._notes.add_line(note_id, item_type_id, quantity, actor_id)

    def update_note_line(
        self, note_id: UUID, item_type_id: UUID, quantity: int, actor_id: UUID
    ) -> MovementNoteLine:
        with self._transaction("update_note_line", actor_id):
            return self._notes.update_line_quantity(note_id, item_type_id, quantity, actor_id)

    def remove_note_line(self, note_id: UUID, item_type_id: UUID, actor_id: UUID) -> None:
        with self._transaction("remove_note_line", actor_id):
            self._notes.remove_line(note_id, item_type_id, actor_id)

    def update_note_remarks(self, note_id: UUID, remarks: str | None, actor_id: UUID) -> MovementNote:
        with self._transaction("update_note_remarks", actor_id):
            return self._notes.update_remarks(note_id, remarks, actor_id)

    def delete_draft_note(self, note_id: UUID, actor_id: UUID) -> None:
        with self._transaction("delete_draft_note", actor_id):
            self._notes.delete_draft(note_id, actor_id)

    def conclude_note(
        self,
        note_id: UUID,
        actor_id: UUID,
        validate_stock: bool = True,
    ) -> NoteConclusionResult:
        with self._transaction("conclude_note", actor_id):
            return self._notes.conclude(
                note_id, actor_id, self.current_policy(), validate_stock=validate_stock
            )

    def cancel_note(self, note_id: UUID, actor_id: UUID, reason: str | None = None) -> MovementNote:
        with self._transaction("cancel_note", actor_id):
            return self._notes.cancel(note_id, actor_id, reason)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def reverse_movement(
        self, entry_id: UUID, actor_id: UUID, reason: str | None = None
    ) -> MovementRecord:
        with self._transaction("reverse_movement", actor_id):
            entry = self._ledger.reverse_movement(
                entry_id,
                actor_id,
                allow_negative=self.current_policy().allow_negative_stock,
                reason=reason,
            )
            return MovementRecord.from_entry(entry)

    def balance(self, key: BucketKey) -> int:
        return self._balances.current_quantity(key)

    def list_balances(
        self,
        location_id: UUID | None = None,
        item_type_id: UUID | None = None,
    ) -> list[BucketBalance]:
        return self._balances.list_balances(location_id=location_id, item_type_id=item_type_id)

    def entries_for_note(self, note_id: UUID) -> list[MovementRecord]:
        return self._ledger_reads.entries_for_note(note_id)

    def entries_for_delivery(self, delivery_id: UUID) -> list[MovementRecord]:
        return self._ledger_reads.entries_for_delivery(delivery_id)

    def entries_for_bucket(self, key: BucketKey) -> list[MovementRecord]:
        return self._ledger_reads.entries_for_bucket(key)

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def adjust_direct(
        self, bucket_key: BucketKey, new_quantity: int, actor_id: UUID, reason: str
    ) -> AdjustmentResult:
        with self._transaction("adjust_direct", actor_id):
            return self._adjustments.adjust_direct(
                bucket_key, new_quantity, actor_id, reason, self.current_policy()
            )

    def reconcile_inventory(
        self, counts: Sequence[InventoryCount], actor_id: UUID
    ) -> ReconciliationResult:
        with self._transaction("reconcile_inventory", actor_id):
            return self._adjustments.reconcile_inventory(counts, actor_id, self.current_policy())

    def simulate_adjustment(self, bucket_key: BucketKey, new_quantity: int) -> AdjustmentPreview:
        return self._adjustments.simulate_adjustment(bucket_key, new_quantity)

    def assess_divergences(
        self,
        counts: Sequence[InventoryCount],
        tolerance_percent: Decimal = Decimal("0"),
    ) -> list[Divergence]:
        return self._adjustments.assess_divergences(counts, tolerance_percent)

    def adjustment_summary(
        self,
        location_id: UUID | None = None,
        item_type_id: UUID | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> AdjustmentSummary:
        return self._ledger_reads.adjustment_summary(location_id, item_type_id, since, until)

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    def create_delivery(
        self,
        worker_record_id: UUID,
        location_id: UUID,
        responsible_actor_id: UUID,
        lines: Sequence[DeliveryLine],
    ) -> DeliveryResult:
        with self._transaction("create_delivery", responsible_actor_id):
            return self._deliveries.create_delivery(
                worker_record_id, location_id, responsible_actor_id, lines
            )

    def sign_delivery(
        self, delivery_id: UUID, actor_id: UUID, signature_ref: str | None = None
    ) -> Delivery:
        with self._transaction("sign_delivery", actor_id):
            return self._deliveries.sign_delivery(delivery_id, actor_id, signature_ref)

    def cancel_delivery(
        self, delivery_id: UUID, actor_id: UUID, reason: str
    ) -> DeliveryCancellationResult:
        with self._transaction("cancel_delivery", actor_id):
            return self._deliveries.cancel_delivery(
                delivery_id, actor_id, reason, self.current_policy()
            )

    def return_progress(self, delivery_id: UUID) -> ReturnProgress:
        return self._delivery_reads.return_progress(delivery_id)

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def process_return(
        self, delivery_id: UUID, items: Sequence[ReturnItem], actor_id: UUID
    ) -> ReturnResult:
        with self._transaction("process_return", actor_id):
            return self._returns.process_return(delivery_id, items, actor_id)

    def process_returns_batch(
        self, items: Sequence[BatchReturnItem], actor_id: UUID
    ) -> BatchReturnResult:
        with self._transaction("process_returns_batch", actor_id):
            return self._returns.process_returns_batch(items, actor_id)

    def cancel_return(
        self, delivery_id: UUID, unit_ids: Sequence[UUID], reason: str, actor_id: UUID
    ) -> ReturnCancellationResult:
        with self._transaction("cancel_return", actor_id):
            return self._returns.cancel_return(
                delivery_id, unit_ids, reason, actor_id, self.current_policy()
            )

    def check_return_eligibility(
        self, delivery_id: UUID, unit_ids: Sequence[UUID] | None = None
    ) -> EligibilityReport:
        return self._returns.check_return_eligibility(delivery_id, unit_ids)

    def check_cancellation_eligibility(
        self, delivery_id: UUID, unit_ids: Sequence[UUID] | None = None
    ) -> EligibilityReport:
        return self._returns.check_cancellation_eligibility(
            delivery_id, unit_ids, self.current_policy()
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_setting(
        self,
        key: str,
        value: str | bool | int,
        actor_id: UUID,
        description: str | None = None,
    ) -> RuntimeSetting:
        with self._transaction("set_setting", actor_id):
            return self._settings.set_setting(key, value, actor_id, description)
