"""
ORM-Level Immutability Enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below intercept those events for protected models
and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                     | Allowed
--------------------|------------------------------------|-----------------------------
LedgerEntry         | ALWAYS (from creation)             | updated_at / updated_by_id
BalanceBucket       | Never deletable                    | quantity changes (ledger)
MovementNote        | After status = CONCLUDED/CANCELLED | the DRAFT -> terminal flip
MovementNoteLine    | When parent note is terminal       | edits in the flip's flush
Delivery            | After status = CANCELLED           | the transition to CANCELLED

The checks look at the status the row had BEFORE the flush (attribute
history), so the transition into a terminal status is itself allowed while
any later change is blocked.

Balance quantities are changed with a Core UPDATE issued by LedgerService,
which does not pass through these mapper events.

===============================================================================
USAGE
===============================================================================

Registered automatically by ``init_engine_from_url``, ``create_tables`` and
the ``InventoryOperations`` constructor.  Registering again is a no-op:

    from ppe_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from ppe_kernel.exceptions import ImmutabilityViolationError
from ppe_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _status_before_flush(target) -> str | None:
    """Status as persisted before the pending flush."""
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return target.status


def _first_changed_field(target) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


# ---------------------------------------------------------------------------
# LedgerEntry
# ---------------------------------------------------------------------------


def _check_ledger_entry_immutability(mapper, connection, target):
    """Ledger entries are append-only: no field may change after insert."""
    field = _first_changed_field(target)
    if field is not None:
        _blocked(
            "LedgerEntry", target, "UPDATE",
            f"Cannot modify field '{field}' on a ledger entry; post a reversal instead",
            field=field,
        )


def _check_ledger_entry_delete(mapper, connection, target):
    _blocked("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


# ---------------------------------------------------------------------------
# BalanceBucket
# ---------------------------------------------------------------------------


def _check_balance_bucket_delete(mapper, connection, target):
    _blocked(
        "BalanceBucket", target, "DELETE",
        "Balance buckets are never deleted, only zeroed",
    )


# ---------------------------------------------------------------------------
# MovementNote / MovementNoteLine
# ---------------------------------------------------------------------------


def _check_movement_note_immutability(mapper, connection, target):
    from ppe_kernel.models.movement_note import TERMINAL_NOTE_STATUSES

    previous = _status_before_flush(target)
    if previous in TERMINAL_NOTE_STATUSES:
        field = _first_changed_field(target)
        if field is not None:
            _blocked(
                "MovementNote", target, "UPDATE",
                f"Cannot modify field '{field}' on a {previous} movement note",
                field=field,
            )


def _check_movement_note_delete(mapper, connection, target):
    from ppe_kernel.models.movement_note import TERMINAL_NOTE_STATUSES

    previous = _status_before_flush(target)
    if previous in TERMINAL_NOTE_STATUSES:
        _blocked(
            "MovementNote", target, "DELETE",
            f"{previous} movement notes cannot be deleted",
        )


def _parent_note_terminal(target) -> str | None:
    from ppe_kernel.models.movement_note import TERMINAL_NOTE_STATUSES

    note = target.note
    if note is None:
        return None
    previous = _status_before_flush(note)
    return previous if previous in TERMINAL_NOTE_STATUSES else None


def _check_movement_note_line_immutability(mapper, connection, target):
    status = _parent_note_terminal(target)
    if status is not None:
        _blocked(
            "MovementNoteLine", target, "UPDATE",
            f"Lines of a {status} movement note cannot be modified",
        )


def _check_movement_note_line_delete(mapper, connection, target):
    status = _parent_note_terminal(target)
    if status is not None:
        _blocked(
            "MovementNoteLine", target, "DELETE",
            f"Lines of a {status} movement note cannot be deleted",
        )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


def _check_delivery_immutability(mapper, connection, target):
    from ppe_kernel.models.delivery import DeliveryStatus

    if _status_before_flush(target) == DeliveryStatus.CANCELLED:
        field = _first_changed_field(target)
        if field is not None:
            _blocked(
                "Delivery", target, "UPDATE",
                f"Cannot modify field '{field}' on a cancelled delivery",
                field=field,
            )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listeners():
    from ppe_kernel.models.balance import BalanceBucket
    from ppe_kernel.models.delivery import Delivery
    from ppe_kernel.models.ledger import LedgerEntry
    from ppe_kernel.models.movement_note import MovementNote, MovementNoteLine

    return [
        (LedgerEntry, "before_update", _check_ledger_entry_immutability),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (BalanceBucket, "before_delete", _check_balance_bucket_delete),
        (MovementNote, "before_update", _check_movement_note_immutability),
        (MovementNote, "before_delete", _check_movement_note_delete),
        (MovementNoteLine, "before_update", _check_movement_note_line_immutability),
        (MovementNoteLine, "before_delete", _check_movement_note_line_delete),
        (Delivery, "before_update", _check_delivery_immutability),
    ]


def register_immutability_listeners():
    """
    Register ORM event listeners for immutability enforcement.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: For tests and data repair only.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
