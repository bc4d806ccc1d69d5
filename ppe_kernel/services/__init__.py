"""Services for the PPE kernel (write side)."""

from ppe_kernel.services.adjustment_service import AdjustmentService
from ppe_kernel.services.delivery_service import DeliveryService
from ppe_kernel.services.ledger_service import LedgerService
from ppe_kernel.services.movement_note_service import MovementNoteService
from ppe_kernel.services.return_service import ReturnService
from ppe_kernel.services.sequence_service import SequenceService
from ppe_kernel.services.settings_service import SettingsService

__all__ = [
    "AdjustmentService",
    "DeliveryService",
    "LedgerService",
    "MovementNoteService",
    "ReturnService",
    "SequenceService",
    "SettingsService",
]
