"""
MovementNoteService -- draft editing and all-or-nothing conclusion of
movement notes.

Responsibility:
    Creates DRAFT notes, edits their lines, and concludes a note by emitting
    the ledger movements for every line in one unit of work.  Cancels drafts.

Architecture position:
    Kernel > Services.  Writes through LedgerService; never touches bucket
    quantities directly.  Never commits.

Invariants enforced:
    - DRAFT is the only editable status; CONCLUDED and CANCELLED are
      terminal (service checks plus ORM listeners).
    - Conclusion is atomic: any per-line failure aborts the whole note and
      leaves no ledger entry, no balance change and the note in DRAFT.
    - TRANSFER lines debit the source before crediting the destination.
    - Buckets are locked in canonical order before any line is applied.

Location rules by type:
    INTAKE      destination only
    TRANSFER    source and destination, distinct
    DISPOSAL    source only
    ADJUSTMENT  destination only

Failure modes:
    - MovementNoteNotFoundError, NoteNotDraftError, EmptyNoteError.
    - InsufficientStockError on stock-consuming notes.
    - ForcedAdjustmentsDisabledError when concluding an ADJUSTMENT note
      with the switch off.
    - InvalidLocationError, InvalidQuantityError, DuplicateNoteLineError,
      ItemTypeNotFoundError, ItemTypeInactiveError on draft edits.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ppe_kernel.domain.clock import Clock
from ppe_kernel.domain.dtos import MovementRecord, NoteConclusionResult
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.domain.values import BucketCondition, BucketKey, MovementLinks
from ppe_kernel.exceptions import (
    DuplicateNoteLineError,
    EmptyNoteError,
    ForcedAdjustmentsDisabledError,
    InsufficientStockError,
    InvalidLocationError,
    InvalidQuantityError,
    ItemTypeInactiveError,
    ItemTypeNotFoundError,
    LocationNotFoundError,
    MissingActorError,
    MovementNoteNotFoundError,
    NoteNotDraftError,
    ValidationError,
)
from ppe_kernel.logging_config import LogContext, get_logger
from ppe_kernel.models.catalog import ItemType, StorageLocation
from ppe_kernel.models.movement_note import (
    MovementNote,
    MovementNoteLine,
    MovementNoteStatus,
    MovementNoteType,
)
from ppe_kernel.services.base import BaseService
from ppe_kernel.services.ledger_service import LedgerService
from ppe_kernel.services.sequence_service import SequenceService

logger = get_logger("services.movement_note")

NUMBER_PREFIXES: dict[MovementNoteType, str] = {
    MovementNoteType.INTAKE: "INT",
    MovementNoteType.TRANSFER: "TRF",
    MovementNoteType.DISPOSAL: "DSP",
    MovementNoteType.ADJUSTMENT: "ADJ",
}

STOCK_CONSUMING_TYPES = frozenset({MovementNoteType.TRANSFER, MovementNoteType.DISPOSAL})

# One planned ledger movement: (bucket, kind, quantity)
_Leg = tuple[BucketKey, MovementKind, int]


class MovementNoteService(BaseService[MovementNote]):
    """
    Movement note lifecycle.

    Contract:
        Every public method is one unit of work (savepoint).  ``conclude``
        returns every ledger movement it created, in application order.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerService | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self._clock)
        self._sequences = sequences or SequenceService(session)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def create_note(
        self,
        note_type: MovementNoteType | str,
        actor_id: UUID,
        source_location_id: UUID | None = None,
        destination_location_id: UUID | None = None,
        remarks: str | None = None,
    ) -> MovementNote:
        if actor_id is None:
            raise MissingActorError("create_note")
        note_type = MovementNoteType(note_type)
        self._check_locations(note_type, source_location_id, destination_location_id)

        with self._unit_of_work():
            sequence = self._sequences.next_value(f"movement_note.{note_type.value}")
            note = MovementNote(
                number=f"{NUMBER_PREFIXES[note_type]}-{sequence:06d}",
                note_type=note_type.value,
                status=MovementNoteStatus.DRAFT.value,
                source_location_id=source_location_id,
                destination_location_id=destination_location_id,
                remarks=remarks,
                created_by_id=actor_id,
            )
            self.session.add(note)
            self.session.flush()

        logger.info(
            "note_created",
            extra={"note_id": str(note.id), "number": note.number, "note_type": note_type.value},
        )
        return note

    def add_line(
        self,
        note_id: UUID,
        item_type_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> MovementNoteLine:
        with self._unit_of_work():
            note = self._load_draft(note_id)
            self._check_line_quantity(note, quantity)
            self._check_item_type(item_type_id)
            if any(line.item_type_id == item_type_id for line in note.lines):
                raise DuplicateNoteLineError(note_id, item_type_id)

            line = MovementNoteLine(
                item_type_id=item_type_id,
                line_number=max((l.line_number for l in note.lines), default=0) + 1,
                requested_quantity=quantity,
                created_by_id=actor_id,
            )
            note.lines.append(line)
            note.updated_by_id = actor_id
            self.session.flush()

        logger.debug(
            "note_line_added",
            extra={"note_id": str(note_id), "item_type_id": str(item_type_id), "quantity": quantity},
        )
        return line

    def update_line_quantity(
        self,
        note_id: UUID,
        item_type_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> MovementNoteLine:
        with self._unit_of_work():
            note = self._load_draft(note_id)
            self._check_line_quantity(note, quantity)
            line = self._line_for(note, item_type_id)
            line.requested_quantity = quantity
            line.updated_by_id = actor_id
            self.session.flush()
        return line

    def remove_line(self, note_id: UUID, item_type_id: UUID, actor_id: UUID) -> None:
        with self._unit_of_work():
            note = self._load_draft(note_id)
            line = self._line_for(note, item_type_id)
            note.lines.remove(line)
            note.updated_by_id = actor_id
            self.session.flush()

    def update_remarks(self, note_id: UUID, remarks: str | None, actor_id: UUID) -> MovementNote:
        with self._unit_of_work():
            note = self._load_draft(note_id)
            note.remarks = remarks
            note.updated_by_id = actor_id
            self.session.flush()
        return note

    def delete_draft(self, note_id: UUID, actor_id: UUID) -> None:
        with self._unit_of_work():
            note = self._load_draft(note_id)
            self.session.delete(note)
            self.session.flush()
        logger.info("note_draft_deleted", extra={"note_id": str(note_id), "actor_id": str(actor_id)})

    def cancel(self, note_id: UUID, actor_id: UUID, reason: str | None = None) -> MovementNote:
        """DRAFT -> CANCELLED.  No ledger effect."""
        if actor_id is None:
            raise MissingActorError("cancel_note")
        with self._unit_of_work():
            note = self._load_draft(note_id)
            note.status = MovementNoteStatus.CANCELLED.value
            note.cancelled_at = self._clock.now()
            note.cancellation_reason = reason
            note.updated_by_id = actor_id
            self.session.flush()

        logger.info("note_cancelled", extra={"note_id": str(note_id), "number": note.number})
        return note

    # ------------------------------------------------------------------
    # Conclusion
    # ------------------------------------------------------------------

    def conclude(
        self,
        note_id: UUID,
        actor_id: UUID,
        policy: StockPolicy,
        validate_stock: bool = True,
    ) -> NoteConclusionResult:
        """
        Emit every line's ledger movements and flip the note to CONCLUDED.

        Args:
            validate_stock: When True (default) and negative stock is off,
                every debit is checked against its bucket before anything is
                written.  False lets debits take buckets negative.

        Raises:
            MovementNoteNotFoundError, NoteNotDraftError, EmptyNoteError,
            InsufficientStockError, ForcedAdjustmentsDisabledError.
        """
        if actor_id is None:
            raise MissingActorError("conclude_note")

        with LogContext.bind(note_id=note_id, actor_id=actor_id), self._unit_of_work():
            note = self._load_note(note_id, for_update=True)
            if note.status != MovementNoteStatus.DRAFT:
                raise NoteNotDraftError(note_id, note.status)
            if not note.lines:
                raise EmptyNoteError(note_id)

            note_type = MovementNoteType(note.note_type)
            if note_type == MovementNoteType.ADJUSTMENT and not policy.allow_forced_adjustments:
                raise ForcedAdjustmentsDisabledError()

            plan = [(line, self._legs_for(note, note_type, line)) for line in note.lines]
            locked = self._ledger.lock_buckets(key for _, legs in plan for key, _, _ in legs)

            allow_negative = policy.allow_negative_stock or not validate_stock
            if note_type in STOCK_CONSUMING_TYPES and not allow_negative:
                self._check_availability(plan, locked)

            links = MovementLinks(movement_note_id=note.id)
            movements: list[MovementRecord] = []
            for line, legs in plan:
                if note_type == MovementNoteType.ADJUSTMENT:
                    applied = self._apply_adjustment_line(
                        line, legs[0][0], actor_id, links, policy, movements
                    )
                else:
                    for key, kind, quantity in legs:
                        entry = self._ledger.apply_movement(
                            key, kind, quantity, actor_id, links,
                            allow_negative=allow_negative,
                        )
                        movements.append(MovementRecord.from_entry(entry))
                    applied = line.requested_quantity
                line.processed_quantity = applied
                line.updated_by_id = actor_id

            note.status = MovementNoteStatus.CONCLUDED.value
            note.concluded_at = self._clock.now()
            note.concluded_by_id = actor_id
            note.updated_by_id = actor_id
            self.session.flush()

            logger.info(
                "note_concluded",
                extra={
                    "number": note.number,
                    "note_type": note_type.value,
                    "line_count": len(plan),
                    "movement_count": len(movements),
                },
            )

        return NoteConclusionResult(
            note_id=note.id,
            number=note.number,
            note_type=note_type.value,
            movements=tuple(movements),
        )

    def _legs_for(
        self,
        note: MovementNote,
        note_type: MovementNoteType,
        line: MovementNoteLine,
    ) -> list[_Leg]:
        available = BucketCondition.AVAILABLE
        qty = line.requested_quantity
        if note_type == MovementNoteType.INTAKE:
            return [(BucketKey(note.destination_location_id, line.item_type_id, available), MovementKind.INTAKE, qty)]
        if note_type == MovementNoteType.DISPOSAL:
            return [(BucketKey(note.source_location_id, line.item_type_id, available), MovementKind.DISPOSAL, qty)]
        if note_type == MovementNoteType.TRANSFER:
            return [
                (BucketKey(note.source_location_id, line.item_type_id, available), MovementKind.TRANSFER_OUT, qty),
                (BucketKey(note.destination_location_id, line.item_type_id, available), MovementKind.TRANSFER_IN, qty),
            ]
        # ADJUSTMENT: signed delta on the destination bucket
        key = BucketKey(note.destination_location_id, line.item_type_id, available)
        return [(key, MovementKind.adjustment_for(qty), abs(qty))]

    def _check_availability(self, plan, locked) -> None:
        for _, legs in plan:
            for key, kind, quantity in legs:
                if not kind.is_debit:
                    continue
                bucket = locked.get(key)
                available = bucket.quantity if bucket is not None else 0
                if available < quantity:
                    raise InsufficientStockError(key, quantity, available)

    def _apply_adjustment_line(
        self,
        line: MovementNoteLine,
        key: BucketKey,
        actor_id: UUID,
        links: MovementLinks,
        policy: StockPolicy,
        movements: list[MovementRecord],
    ) -> int:
        """Apply a signed delta; debits are clamped at zero unless negative stock is on.

        Returns the signed quantity actually applied.
        """
        delta = line.requested_quantity
        if delta < 0 and not policy.allow_negative_stock:
            bucket = self._ledger.find_bucket(key, for_update=True)
            current = max(bucket.quantity, 0) if bucket is not None else 0
            delta = -min(-delta, current)
            if delta != line.requested_quantity:
                logger.warning(
                    "adjustment_line_clamped",
                    extra={
                        "bucket_key": str(key),
                        "requested": line.requested_quantity,
                        "applied": delta,
                    },
                )
        if delta == 0:
            return 0

        entry = self._ledger.apply_movement(
            key, MovementKind.adjustment_for(delta), abs(delta), actor_id, links,
            allow_negative=policy.allow_negative_stock,
        )
        movements.append(MovementRecord.from_entry(entry))
        return delta

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_note(self, note_id: UUID, for_update: bool = False) -> MovementNote:
        stmt = select(MovementNote).where(MovementNote.id == note_id)
        if for_update:
            stmt = stmt.with_for_update()
        note = self.session.execute(stmt).scalar_one_or_none()
        if note is None:
            raise MovementNoteNotFoundError(note_id)
        return note

    def _load_draft(self, note_id: UUID) -> MovementNote:
        note = self._load_note(note_id, for_update=True)
        if note.status != MovementNoteStatus.DRAFT:
            raise NoteNotDraftError(note_id, note.status)
        return note

    @staticmethod
    def _line_for(note: MovementNote, item_type_id: UUID) -> MovementNoteLine:
        for line in note.lines:
            if line.item_type_id == item_type_id:
                return line
        raise ValidationError(f"Note {note.id} has no line for item type {item_type_id}")

    @staticmethod
    def _check_line_quantity(note: MovementNote, quantity: int) -> None:
        if note.note_type == MovementNoteType.ADJUSTMENT:
            if quantity == 0:
                raise InvalidQuantityError(quantity, "adjustment lines need a non-zero delta")
        elif quantity <= 0:
            raise InvalidQuantityError(quantity, "note lines require quantity > 0")

    def _check_item_type(self, item_type_id: UUID) -> None:
        item_type = self.session.get(ItemType, item_type_id)
        if item_type is None:
            raise ItemTypeNotFoundError(item_type_id)
        if not item_type.is_active:
            raise ItemTypeInactiveError(item_type_id)

    def _check_locations(
        self,
        note_type: MovementNoteType,
        source_location_id: UUID | None,
        destination_location_id: UUID | None,
    ) -> None:
        needs_source = note_type in (MovementNoteType.TRANSFER, MovementNoteType.DISPOSAL)
        needs_destination = note_type != MovementNoteType.DISPOSAL

        if needs_source and source_location_id is None:
            raise InvalidLocationError(f"{note_type.value} notes require a source location")
        if not needs_source and source_location_id is not None:
            raise InvalidLocationError(f"{note_type.value} notes take no source location")
        if needs_destination and destination_location_id is None:
            raise InvalidLocationError(f"{note_type.value} notes require a destination location")
        if not needs_destination and destination_location_id is not None:
            raise InvalidLocationError(f"{note_type.value} notes take no destination location")
        if source_location_id is not None and source_location_id == destination_location_id:
            raise InvalidLocationError("source and destination must differ")

        for location_id in (source_location_id, destination_location_id):
            if location_id is None:
                continue
            location = self.session.get(StorageLocation, location_id)
            if location is None:
                raise LocationNotFoundError(location_id)
            if not location.is_active:
                raise InvalidLocationError(f"location {location_id} is inactive")
