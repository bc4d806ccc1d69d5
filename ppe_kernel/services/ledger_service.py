"""
LedgerService -- the only writer of balance buckets and ledger entries.

Responsibility:
    Applies a movement to a bucket and records it as an immutable ledger
    entry carrying the balance before and after.  Reverses an entry by
    posting a counter-entry that references it.

Architecture position:
    Kernel > Services -- imperative shell.  Called by MovementNoteService,
    AdjustmentService, DeliveryService and ReturnService.  Never commits.

Invariants enforced:
    - Balance mutation is one server-side statement:
      ``UPDATE balance_buckets SET quantity = quantity + :delta
      WHERE id = :id [AND quantity >= :qty] [AND quantity = :expected]
      RETURNING quantity, entry_count``.  The entry's balance_after and
      bucket_sequence are the returned values and balance_before =
      balance_after - delta, so concurrent writers can never produce a lost
      update or an entry that disagrees with the bucket.
    - Debits never take a bucket below zero unless the caller passes
      ``allow_negative=True`` (the negative-stock switch).
    - Multi-bucket callers lock buckets through ``lock_buckets`` which
      always acquires row locks in BucketKey order.
    - An entry is reversed at most once; reversal entries are not
      reversible (service check plus UNIQUE on reversal_of_id).

Failure modes:
    - InvalidQuantityError: quantity <= 0.
    - InsufficientStockError: debit would breach zero.
    - StaleBalanceError: compare-and-swap lost to a concurrent writer.
    - LedgerEntryNotFoundError / EntryAlreadyReversedError /
      EntryNotReversibleError on reversal.
    - LocationNotFoundError / ItemTypeNotFoundError when a new bucket
      would reference a missing catalog row.

Audit relevance:
    Every call emits ``movement_applied`` or ``movement_reversed`` with the
    bucket, kind, quantity and before/after balances.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ppe_kernel.domain.clock import Clock
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketKey, MovementLinks
from ppe_kernel.exceptions import (
    EntryAlreadyReversedError,
    EntryNotReversibleError,
    InsufficientStockError,
    InvalidQuantityError,
    ItemTypeNotFoundError,
    LedgerEntryNotFoundError,
    LocationNotFoundError,
    MissingActorError,
    StaleBalanceError,
)
from ppe_kernel.logging_config import get_logger
from ppe_kernel.models.balance import BalanceBucket
from ppe_kernel.models.catalog import ItemType, StorageLocation
from ppe_kernel.models.ledger import LedgerEntry
from ppe_kernel.services.base import BaseService

logger = get_logger("services.ledger")

_buckets = BalanceBucket.__table__


def bucket_key_of(bucket: BalanceBucket) -> BucketKey:
    return BucketKey(bucket.location_id, bucket.item_type_id, bucket.condition)


class LedgerService(BaseService[LedgerEntry]):
    """
    Movement ledger and balance store writer.

    Contract:
        ``apply_movement`` and ``reverse_movement`` each run inside their own
        savepoint; on failure neither the bucket nor the ledger changes.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def find_bucket(self, key: BucketKey, for_update: bool = False) -> BalanceBucket | None:
        stmt = select(BalanceBucket).where(
            BalanceBucket.location_id == key.location_id,
            BalanceBucket.item_type_id == key.item_type_id,
            BalanceBucket.condition == key.condition.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_buckets(self, keys: Iterable[BucketKey]) -> dict[BucketKey, BalanceBucket]:
        """
        Row-lock every existing bucket among ``keys`` in canonical order.

        Missing buckets are skipped; they are created lazily (and safely,
        under the unique key) on first movement.
        """
        locked: dict[BucketKey, BalanceBucket] = {}
        for key in sorted(set(keys)):
            bucket = self.find_bucket(key, for_update=True)
            if bucket is not None:
                locked[key] = bucket
        return locked

    def get_or_create_bucket(self, key: BucketKey, actor_id: UUID) -> BalanceBucket:
        bucket = self.find_bucket(key)
        if bucket is not None:
            return bucket

        if self.session.get(StorageLocation, key.location_id) is None:
            raise LocationNotFoundError(key.location_id)
        if self.session.get(ItemType, key.item_type_id) is None:
            raise ItemTypeNotFoundError(key.item_type_id)

        savepoint = self.session.begin_nested()
        try:
            bucket = BalanceBucket(
                location_id=key.location_id,
                item_type_id=key.item_type_id,
                condition=key.condition.value,
                quantity=0,
                created_by_id=actor_id,
            )
            self.session.add(bucket)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Created concurrently under the same key
            savepoint.rollback()
            logger.debug("bucket_creation_race_retry", extra={"bucket_key": str(key)})
            bucket = self.find_bucket(key)
            if bucket is None:
                raise
            return bucket

        logger.debug(
            "bucket_created",
            extra={"bucket_id": str(bucket.id), "bucket_key": str(key)},
        )
        return bucket

    def current_quantity(self, bucket_id: UUID) -> int:
        return self.session.execute(
            select(_buckets.c.quantity).where(_buckets.c.id == bucket_id)
        ).scalar_one()

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def apply_movement(
        self,
        key: BucketKey,
        kind: MovementKind,
        quantity: int,
        actor_id: UUID,
        links: MovementLinks | None = None,
        *,
        allow_negative: bool = False,
        expected_balance: int | None = None,
    ) -> LedgerEntry:
        """
        Apply ``quantity`` units of ``kind`` to the bucket at ``key``.

        Preconditions:
            - quantity > 0; the direction comes from ``kind.sign``.
        Postconditions:
            - Bucket quantity changed by ``kind.sign * quantity``.
            - One LedgerEntry exists with matching before/after balances.

        Args:
            allow_negative: Permit a debit to take the bucket below zero.
            expected_balance: Compare-and-swap guard; the update only
                happens if the bucket still holds exactly this quantity.

        Raises:
            InsufficientStockError, StaleBalanceError, InvalidQuantityError,
            MissingActorError.
        """
        if actor_id is None:
            raise MissingActorError("apply_movement")
        if quantity <= 0:
            raise InvalidQuantityError(quantity, "ledger movements require quantity > 0")
        links = links or MovementLinks()

        with self._unit_of_work():
            bucket = self.get_or_create_bucket(key, actor_id)
            delta = kind.sign * quantity

            stmt = (
                update(_buckets)
                .where(_buckets.c.id == bucket.id)
                .values(
                    quantity=_buckets.c.quantity + delta,
                    entry_count=_buckets.c.entry_count + 1,
                    updated_by_id=actor_id,
                )
                .returning(_buckets.c.quantity, _buckets.c.entry_count)
            )
            if expected_balance is not None:
                stmt = stmt.where(_buckets.c.quantity == expected_balance)
            if delta < 0 and not allow_negative:
                stmt = stmt.where(_buckets.c.quantity >= quantity)

            row = self.session.execute(stmt).one_or_none()
            if row is None:
                current = self.current_quantity(bucket.id)
                if expected_balance is not None and current != expected_balance:
                    raise StaleBalanceError(key, expected_balance)
                raise InsufficientStockError(key, quantity, current)
            balance_after, sequence = row

            # The ORM copy of the bucket is stale after the Core UPDATE
            self.session.expire(bucket, ["quantity", "entry_count", "updated_at", "updated_by_id"])

            entry = LedgerEntry(
                bucket_id=bucket.id,
                bucket_sequence=sequence,
                kind=kind.value,
                quantity=quantity,
                balance_before=balance_after - delta,
                balance_after=balance_after,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                movement_note_id=links.movement_note_id,
                delivery_id=links.delivery_id,
                delivery_unit_id=links.delivery_unit_id,
                reversal_of_id=links.reversal_of_id,
                reason=links.reason,
                created_by_id=actor_id,
            )
            self.session.add(entry)
            self.session.flush()

        logger.info(
            "movement_applied",
            extra={
                "entry_id": str(entry.id),
                "bucket_id": str(bucket.id),
                "bucket_key": str(key),
                "kind": kind.value,
                "quantity": quantity,
                "balance_before": entry.balance_before,
                "balance_after": entry.balance_after,
            },
        )
        return entry

    def find_reversal(self, entry_id: UUID) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry).where(LedgerEntry.reversal_of_id == entry_id)
        ).scalar_one_or_none()

    def reverse_movement(
        self,
        entry_id: UUID,
        actor_id: UUID,
        *,
        allow_negative: bool = False,
        reason: str | None = None,
    ) -> LedgerEntry:
        """
        Counter ``entry_id`` with an opposite-signed entry that references it.

        The reversal keeps the original's note and delivery links.
        Reversing a credit that has since been consumed fails with
        InsufficientStockError unless ``allow_negative`` is set.

        Entries tied to a delivery unit (its ISSUE and RETURN) are refused:
        the unit's custody status moves with them, so they are only undone
        by cancelling the delivery or the return.

        Raises:
            LedgerEntryNotFoundError: Entry does not exist.
            EntryNotReversibleError: Entry is itself a reversal, or belongs
                to a delivery unit.
            EntryAlreadyReversedError: Entry already has a reversal.
        """
        return self._reverse(
            entry_id, actor_id, unit_scoped=False, allow_negative=allow_negative, reason=reason
        )

    def reverse_unit_movement(
        self,
        entry_id: UUID,
        actor_id: UUID,
        *,
        allow_negative: bool = False,
        reason: str | None = None,
    ) -> LedgerEntry:
        """
        Reverse the ISSUE or RETURN entry of a delivery unit.

        Only DeliveryService.cancel_delivery and ReturnService.cancel_return
        call this, in the same unit of work that moves the unit's status.
        """
        return self._reverse(
            entry_id, actor_id, unit_scoped=True, allow_negative=allow_negative, reason=reason
        )

    def _reverse(
        self,
        entry_id: UUID,
        actor_id: UUID,
        *,
        unit_scoped: bool,
        allow_negative: bool,
        reason: str | None,
    ) -> LedgerEntry:
        if actor_id is None:
            raise MissingActorError("reverse_movement")

        with self._unit_of_work():
            original = self.session.execute(
                select(LedgerEntry).where(LedgerEntry.id == entry_id).with_for_update()
            ).scalar_one_or_none()
            if original is None:
                raise LedgerEntryNotFoundError(entry_id)

            kind = MovementKind(original.kind)
            if kind.is_reversal:
                raise EntryNotReversibleError(entry_id, kind.value)
            if unit_scoped and original.delivery_unit_id is None:
                raise EntryNotReversibleError(entry_id, kind.value, "not linked to a delivery unit")
            if not unit_scoped and original.delivery_unit_id is not None:
                logger.warning(
                    "reversal_rejected_unit_entry",
                    extra={"entry_id": str(entry_id), "unit_id": str(original.delivery_unit_id)},
                )
                raise EntryNotReversibleError(
                    entry_id,
                    kind.value,
                    "linked to a delivery unit; cancel the delivery or the return instead",
                )

            existing = self.find_reversal(original.id)
            if existing is not None:
                logger.warning(
                    "reversal_rejected_already_reversed",
                    extra={"entry_id": str(entry_id), "reversal_entry_id": str(existing.id)},
                )
                raise EntryAlreadyReversedError(entry_id, existing.id)

            reversal = self.apply_movement(
                bucket_key_of(original.bucket),
                kind.reversal_kind,
                original.quantity,
                actor_id,
                MovementLinks(
                    movement_note_id=original.movement_note_id,
                    delivery_id=original.delivery_id,
                    delivery_unit_id=original.delivery_unit_id,
                    reversal_of_id=original.id,
                    reason=reason,
                ),
                allow_negative=allow_negative,
            )

        logger.info(
            "movement_reversed",
            extra={
                "entry_id": str(original.id),
                "reversal_entry_id": str(reversal.id),
                "kind": reversal.kind,
                "quantity": reversal.quantity,
            },
        )
        return reversal
