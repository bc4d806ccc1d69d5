"""
Typed Exception Hierarchy for the PPE Kernel.

Every error has a typed class, a machine-readable ``code`` attribute and
structured attributes (entity id, offending quantity or state) so the
boundary layer can render a precise message without parsing strings.

Example:
    try:
        operations.conclude_note(note_id, actor_id)
    except InsufficientStockError as e:
        api_response(code=e.code, bucket=e.bucket_key, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PPEKernelError (base)
    |
    +-- NotFoundError
    |   +-- MovementNoteNotFoundError
    |   +-- DeliveryNotFoundError
    |   +-- DeliveryUnitNotFoundError
    |   +-- BucketNotFoundError
    |   +-- LedgerEntryNotFoundError
    |   +-- WorkerRecordNotFoundError
    |   +-- ItemTypeNotFoundError
    |   +-- LocationNotFoundError
    |
    +-- InvalidStateError
    |   +-- NoteNotDraftError
    |   +-- EmptyNoteError
    |   +-- DeliveryNotSignedError
    |   +-- DeliveryNotPendingError
    |   +-- DeliveryAlreadyCancelledError
    |   +-- DeliveryHasReturnsError
    |   +-- WorkerRecordInactiveError
    |   +-- ItemTypeInactiveError
    |   +-- BucketNotAvailableError
    |   +-- EntryAlreadyReversedError
    |   +-- EntryNotReversibleError
    |
    +-- InsufficientStockError
    +-- InvalidItemStateError
    +-- CancellationWindowExpiredError
    +-- NoAdjustmentNeededError
    |
    +-- PermissionDeniedError
    |   +-- ForcedAdjustmentsDisabledError
    |   +-- MissingActorError
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- MissingReasonError
    |   +-- InvalidLocationError
    |   +-- DuplicateNoteLineError
    |   +-- EmptyRequestError
    |
    +-- ConcurrencyError
    |   +-- StaleBalanceError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-----------------------------------
Not found       | *_NOT_FOUND                   | Referenced entity absent
----------------|-------------------------------|-----------------------------------
State           | NOTE_NOT_DRAFT                | Editing/concluding a terminal note
                | EMPTY_NOTE                    | Concluding a note without lines
                | DELIVERY_NOT_SIGNED           | Return against unsigned delivery
                | DELIVERY_NOT_PENDING          | Signing a non-pending delivery
                | DELIVERY_ALREADY_CANCELLED    | Cancelling twice
                | DELIVERY_HAS_RETURNS          | Cancelling after returns
                | WORKER_RECORD_INACTIVE        | Delivery to an inactive record
                | ITEM_TYPE_INACTIVE            | Discontinued item type
                | BUCKET_NOT_AVAILABLE          | Delivering from a non-AVAILABLE bucket
                | ENTRY_ALREADY_REVERSED        | Second reversal of one entry
                | ENTRY_NOT_REVERSIBLE          | Reversing a reversal entry
----------------|-------------------------------|-----------------------------------
Stock           | INSUFFICIENT_STOCK            | Debit would breach zero
Items           | INVALID_ITEM_STATE            | Unit not in delivery / wrong status
Time            | CANCELLATION_WINDOW_EXPIRED   | Grace window elapsed
Adjustment      | NO_ADJUSTMENT_NEEDED          | Counted quantity equals balance
----------------|-------------------------------|-----------------------------------
Permission      | FORCED_ADJUSTMENTS_DISABLED   | Adjustment switch is off
                | MISSING_ACTOR                 | No actor id supplied
----------------|-------------------------------|-----------------------------------
Validation      | INVALID_QUANTITY              | Quantity outside allowed range
                | MISSING_REASON                | Blank reason
                | INVALID_LOCATION              | Location rules violated
                | DUPLICATE_NOTE_LINE           | Item type already on the note
                | EMPTY_REQUEST                 | Empty item/count list
----------------|-------------------------------|-----------------------------------
Concurrency     | STALE_BALANCE                 | Balance changed under a CAS update
Immutability    | IMMUTABILITY_VIOLATION        | Update/delete of protected row
"""

from datetime import datetime
from typing import Any


class PPEKernelError(Exception):
    """Base exception for all PPE kernel errors."""

    code: str = "PPE_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(PPEKernelError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(
            f"{self.entity_type} with identifier '{entity_id}' not found"
        )


class MovementNoteNotFoundError(NotFoundError):
    code: str = "MOVEMENT_NOTE_NOT_FOUND"
    entity_type = "MovementNote"


class DeliveryNotFoundError(NotFoundError):
    code: str = "DELIVERY_NOT_FOUND"
    entity_type = "Delivery"


class DeliveryUnitNotFoundError(NotFoundError):
    code: str = "DELIVERY_UNIT_NOT_FOUND"
    entity_type = "DeliveryUnit"


class BucketNotFoundError(NotFoundError):
    code: str = "BUCKET_NOT_FOUND"
    entity_type = "BalanceBucket"


class LedgerEntryNotFoundError(NotFoundError):
    code: str = "LEDGER_ENTRY_NOT_FOUND"
    entity_type = "LedgerEntry"


class WorkerRecordNotFoundError(NotFoundError):
    code: str = "WORKER_RECORD_NOT_FOUND"
    entity_type = "WorkerRecord"


class ItemTypeNotFoundError(NotFoundError):
    code: str = "ITEM_TYPE_NOT_FOUND"
    entity_type = "ItemType"


class LocationNotFoundError(NotFoundError):
    code: str = "LOCATION_NOT_FOUND"
    entity_type = "StorageLocation"


# State exceptions


class InvalidStateError(PPEKernelError):
    """Operation attempted against a terminal or wrong-phase entity."""

    code: str = "INVALID_STATE"


class NoteNotDraftError(InvalidStateError):
    """Movement note is no longer editable."""

    code: str = "NOTE_NOT_DRAFT"

    def __init__(self, note_id: str, status: str):
        self.note_id = str(note_id)
        self.status = status
        super().__init__(
            f"Movement note {note_id} is {status}; only DRAFT notes can change"
        )


class EmptyNoteError(InvalidStateError):
    code: str = "EMPTY_NOTE"

    def __init__(self, note_id: str):
        self.note_id = str(note_id)
        super().__init__(f"Movement note {note_id} has no lines")


class DeliveryNotSignedError(InvalidStateError):
    """Returns are only accepted against SIGNED deliveries."""

    code: str = "DELIVERY_NOT_SIGNED"

    def __init__(self, delivery_id: str, status: str):
        self.delivery_id = str(delivery_id)
        self.status = status
        super().__init__(
            f"Delivery {delivery_id} is {status}; returns require a SIGNED delivery"
        )


class DeliveryNotPendingError(InvalidStateError):
    code: str = "DELIVERY_NOT_PENDING"

    def __init__(self, delivery_id: str, status: str):
        self.delivery_id = str(delivery_id)
        self.status = status
        super().__init__(
            f"Delivery {delivery_id} is {status}; expected PENDING_SIGNATURE"
        )


class DeliveryAlreadyCancelledError(InvalidStateError):
    code: str = "DELIVERY_ALREADY_CANCELLED"

    def __init__(self, delivery_id: str):
        self.delivery_id = str(delivery_id)
        super().__init__(f"Delivery {delivery_id} is already cancelled")


class DeliveryHasReturnsError(InvalidStateError):
    code: str = "DELIVERY_HAS_RETURNS"

    def __init__(self, delivery_id: str, returned_count: int):
        self.delivery_id = str(delivery_id)
        self.returned_count = returned_count
        super().__init__(
            f"Delivery {delivery_id} has {returned_count} returned unit(s) "
            "and cannot be cancelled"
        )


class WorkerRecordInactiveError(InvalidStateError):
    code: str = "WORKER_RECORD_INACTIVE"

    def __init__(self, record_id: str, status: str):
        self.record_id = str(record_id)
        self.status = status
        super().__init__(f"Worker record {record_id} is {status}, not ACTIVE")


class ItemTypeInactiveError(InvalidStateError):
    code: str = "ITEM_TYPE_INACTIVE"

    def __init__(self, item_type_id: str):
        self.item_type_id = str(item_type_id)
        super().__init__(f"Item type {item_type_id} is discontinued")


class BucketNotAvailableError(InvalidStateError):
    code: str = "BUCKET_NOT_AVAILABLE"

    def __init__(self, bucket_key: str, condition: str):
        self.bucket_key = str(bucket_key)
        self.condition = condition
        super().__init__(
            f"Bucket {bucket_key} holds {condition} stock; only AVAILABLE "
            "stock can be delivered"
        )


class EntryAlreadyReversedError(InvalidStateError):
    """Ledger entry has already been countered by a reversal."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_entry_id: str):
        self.entry_id = str(entry_id)
        self.reversal_entry_id = str(reversal_entry_id)
        super().__init__(
            f"Ledger entry {entry_id} already reversed by {reversal_entry_id}"
        )


class EntryNotReversibleError(InvalidStateError):
    code: str = "ENTRY_NOT_REVERSIBLE"

    def __init__(self, entry_id: str, kind: str, reason: str | None = None):
        self.entry_id = str(entry_id)
        self.kind = kind
        self.reason = reason
        message = f"Ledger entry {entry_id} of kind {kind} cannot be reversed"
        super().__init__(f"{message}: {reason}" if reason else message)


# Stock and item exceptions


class InsufficientStockError(PPEKernelError):
    """A debit would take a bucket below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, bucket_key: str, requested: int, available: int):
        self.bucket_key = str(bucket_key)
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock in {bucket_key}: requested {requested}, "
            f"available {available}"
        )


class InvalidItemStateError(PPEKernelError):
    """A delivery unit failed a per-item check."""

    code: str = "INVALID_ITEM_STATE"

    def __init__(self, unit_id: str, reason: str, status: str | None = None):
        self.unit_id = str(unit_id)
        self.reason = reason
        self.status = status
        super().__init__(f"Delivery unit {unit_id}: {reason}")


class CancellationWindowExpiredError(PPEKernelError):
    code: str = "CANCELLATION_WINDOW_EXPIRED"

    def __init__(
        self,
        entity_id: str,
        occurred_at: datetime,
        window_hours: int,
    ):
        self.entity_id = str(entity_id)
        self.occurred_at = occurred_at
        self.window_hours = window_hours
        super().__init__(
            f"Cancellation window of {window_hours}h for {entity_id} "
            f"(at {occurred_at.isoformat()}) has expired"
        )


class NoAdjustmentNeededError(PPEKernelError):
    code: str = "NO_ADJUSTMENT_NEEDED"

    def __init__(self, bucket_key: str, quantity: int):
        self.bucket_key = str(bucket_key)
        self.quantity = quantity
        super().__init__(
            f"Bucket {bucket_key} already holds {quantity}; no adjustment needed"
        )


# Permission exceptions


class PermissionDeniedError(PPEKernelError):
    code: str = "PERMISSION_DENIED"


class ForcedAdjustmentsDisabledError(PermissionDeniedError):
    code: str = "FORCED_ADJUSTMENTS_DISABLED"

    def __init__(self):
        super().__init__("Forced stock adjustments are disabled")


class MissingActorError(PermissionDeniedError):
    code: str = "MISSING_ACTOR"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation {operation} requires an actor id")


# Validation exceptions


class ValidationError(PPEKernelError):
    """Input failed a structural check."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: int, rule: str):
        self.quantity = quantity
        self.rule = rule
        super().__init__(f"Invalid quantity {quantity}: {rule}")


class MissingReasonError(ValidationError):
    code: str = "MISSING_REASON"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation {operation} requires a non-empty reason")


class InvalidLocationError(ValidationError):
    code: str = "INVALID_LOCATION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid location: {reason}")


class DuplicateNoteLineError(ValidationError):
    code: str = "DUPLICATE_NOTE_LINE"

    def __init__(self, note_id: str, item_type_id: str):
        self.note_id = str(note_id)
        self.item_type_id = str(item_type_id)
        super().__init__(
            f"Movement note {note_id} already has a line for item type {item_type_id}"
        )


class EmptyRequestError(ValidationError):
    code: str = "EMPTY_REQUEST"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation {operation} requires at least one item")


# Concurrency exceptions


class ConcurrencyError(PPEKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StaleBalanceError(ConcurrencyError):
    """Compare-and-swap balance update lost a race."""

    code: str = "STALE_BALANCE"

    def __init__(self, bucket_key: str, expected: int):
        self.bucket_key = str(bucket_key)
        self.expected = expected
        super().__init__(
            f"Balance of {bucket_key} changed concurrently; expected {expected}"
        )


# Immutability exceptions


class ImmutabilityError(PPEKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries are always immutable. Movement notes and their lines are
    immutable once CONCLUDED or CANCELLED. Buckets are never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
