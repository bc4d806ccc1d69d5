"""ORM models for the PPE kernel."""

from ppe_kernel.models.balance import BalanceBucket
from ppe_kernel.models.catalog import (
    ItemType,
    StorageLocation,
    WorkerRecord,
    WorkerRecordStatus,
)
from ppe_kernel.models.delivery import (
    Delivery,
    DeliveryStatus,
    DeliveryUnit,
    DeliveryUnitStatus,
)
from ppe_kernel.models.ledger import LedgerEntry
from ppe_kernel.models.movement_note import (
    TERMINAL_NOTE_STATUSES,
    MovementNote,
    MovementNoteLine,
    MovementNoteStatus,
    MovementNoteType,
)
from ppe_kernel.models.sequence import SequenceCounter
from ppe_kernel.models.setting import RuntimeSetting

__all__ = [
    "BalanceBucket",
    "Delivery",
    "DeliveryStatus",
    "DeliveryUnit",
    "DeliveryUnitStatus",
    "ItemType",
    "LedgerEntry",
    "MovementNote",
    "MovementNoteLine",
    "MovementNoteStatus",
    "MovementNoteType",
    "RuntimeSetting",
    "SequenceCounter",
    "StorageLocation",
    "TERMINAL_NOTE_STATUSES",
    "WorkerRecord",
    "WorkerRecordStatus",
]
