"""
LedgerSelector -- read access to the movement ledger.

Every query returns MovementRecord DTOs.  Entries of one bucket come back in
bucket_sequence order, which is the order they were applied.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from ppe_kernel.domain.dtos import AdjustmentSummary, MovementRecord
from ppe_kernel.domain.movement_kinds import MovementKind
from ppe_kernel.domain.values import BucketKey
from ppe_kernel.exceptions import LedgerEntryNotFoundError
from ppe_kernel.models.balance import BalanceBucket
from ppe_kernel.models.ledger import LedgerEntry
from ppe_kernel.selectors.base import BaseSelector

_ADJUSTMENT_KINDS = (MovementKind.ADJUSTMENT_IN.value, MovementKind.ADJUSTMENT_OUT.value)


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Ledger queries."""

    def _records(self, stmt) -> list[MovementRecord]:
        entries = self.session.execute(
            stmt.order_by(
                LedgerEntry.occurred_at,
                LedgerEntry.bucket_id,
                LedgerEntry.bucket_sequence,
            )
        ).scalars().all()
        return [MovementRecord.from_entry(e) for e in entries]

    def get_entry(self, entry_id: UUID) -> MovementRecord:
        entry = self.session.get(LedgerEntry, entry_id)
        if entry is None:
            raise LedgerEntryNotFoundError(entry_id)
        return MovementRecord.from_entry(entry)

    def entries_for_note(self, note_id: UUID) -> list[MovementRecord]:
        return self._records(
            select(LedgerEntry).where(LedgerEntry.movement_note_id == note_id)
        )

    def entries_for_delivery(
        self,
        delivery_id: UUID,
        kind: MovementKind | None = None,
    ) -> list[MovementRecord]:
        stmt = select(LedgerEntry).where(LedgerEntry.delivery_id == delivery_id)
        if kind is not None:
            stmt = stmt.where(LedgerEntry.kind == MovementKind(kind).value)
        return self._records(stmt)

    def entries_for_unit(self, unit_id: UUID) -> list[MovementRecord]:
        return self._records(
            select(LedgerEntry).where(LedgerEntry.delivery_unit_id == unit_id)
        )

    def entries_for_bucket(self, key: BucketKey) -> list[MovementRecord]:
        entries = self.session.execute(
            select(LedgerEntry)
            .join(BalanceBucket, LedgerEntry.bucket_id == BalanceBucket.id)
            .where(
                BalanceBucket.location_id == key.location_id,
                BalanceBucket.item_type_id == key.item_type_id,
                BalanceBucket.condition == key.condition.value,
            )
            .order_by(LedgerEntry.bucket_sequence)
        ).scalars().all()
        return [MovementRecord.from_entry(e) for e in entries]

    def reversal_of(self, entry_id: UUID) -> MovementRecord | None:
        """The entry that reversed ``entry_id``, if any."""
        entry = self.session.execute(
            select(LedgerEntry).where(LedgerEntry.reversal_of_id == entry_id)
        ).scalar_one_or_none()
        return MovementRecord.from_entry(entry) if entry is not None else None

    def replay_balance(self, key: BucketKey) -> int:
        """Recompute a bucket's quantity from its entries."""
        return sum(r.signed_quantity for r in self.entries_for_bucket(key))

    def chain_breaks(self, key: BucketKey) -> list[UUID]:
        """
        Entries whose balance_before differs from the previous entry's
        balance_after.  Empty for an intact bucket history.
        """
        broken = []
        balance = 0
        for record in self.entries_for_bucket(key):
            if record.balance_before != balance:
                broken.append(record.entry_id)
            balance = record.balance_after
        return broken

    def adjustment_summary(
        self,
        location_id: UUID | None = None,
        item_type_id: UUID | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> AdjustmentSummary:
        """ADJUSTMENT_IN/OUT entries in the window, with totals."""
        stmt = (
            select(LedgerEntry)
            .join(BalanceBucket, LedgerEntry.bucket_id == BalanceBucket.id)
            .where(LedgerEntry.kind.in_(_ADJUSTMENT_KINDS))
        )
        if location_id is not None:
            stmt = stmt.where(BalanceBucket.location_id == location_id)
        if item_type_id is not None:
            stmt = stmt.where(BalanceBucket.item_type_id == item_type_id)
        if since is not None:
            stmt = stmt.where(LedgerEntry.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(LedgerEntry.occurred_at < until)

        movements = self._records(stmt)
        return AdjustmentSummary(
            movements=tuple(movements),
            total_in=sum(m.quantity for m in movements if m.kind == MovementKind.ADJUSTMENT_IN),
            total_out=sum(m.quantity for m in movements if m.kind == MovementKind.ADJUSTMENT_OUT),
        )
