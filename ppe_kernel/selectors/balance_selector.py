"""
BalanceSelector -- read access to the Balance Store.

Buckets that were never created read as zero.  Reads take no locks, so
reporting never blocks writers.
"""

from uuid import UUID

from sqlalchemy import func, select

from ppe_kernel.domain.dtos import BucketBalance
from ppe_kernel.domain.values import BucketCondition, BucketKey
from ppe_kernel.models.balance import BalanceBucket
from ppe_kernel.selectors.base import BaseSelector


def _to_balance(bucket: BalanceBucket) -> BucketBalance:
    return BucketBalance(
        bucket_id=bucket.id,
        bucket_key=BucketKey(bucket.location_id, bucket.item_type_id, bucket.condition),
        quantity=bucket.quantity,
    )


class BalanceSelector(BaseSelector[BalanceBucket]):
    """Balance queries."""

    def get_balance(self, key: BucketKey) -> BucketBalance | None:
        bucket = self.session.execute(
            select(BalanceBucket)
            .where(
                BalanceBucket.location_id == key.location_id,
                BalanceBucket.item_type_id == key.item_type_id,
                BalanceBucket.condition == key.condition.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return _to_balance(bucket) if bucket is not None else None

    def current_quantity(self, key: BucketKey) -> int:
        balance = self.get_balance(key)
        return balance.quantity if balance is not None else 0

    def list_balances(
        self,
        location_id: UUID | None = None,
        item_type_id: UUID | None = None,
        condition: BucketCondition | str | None = None,
        include_zero: bool = False,
    ) -> list[BucketBalance]:
        stmt = select(BalanceBucket).execution_options(populate_existing=True)
        if location_id is not None:
            stmt = stmt.where(BalanceBucket.location_id == location_id)
        if item_type_id is not None:
            stmt = stmt.where(BalanceBucket.item_type_id == item_type_id)
        if condition is not None:
            stmt = stmt.where(BalanceBucket.condition == BucketCondition(condition).value)
        if not include_zero:
            stmt = stmt.where(BalanceBucket.quantity != 0)

        buckets = self.session.execute(stmt).scalars().all()
        return sorted((_to_balance(b) for b in buckets), key=lambda b: b.bucket_key)

    def total_quantity(
        self,
        item_type_id: UUID | None = None,
        location_id: UUID | None = None,
    ) -> int:
        """Sum of bucket quantities across every condition."""
        stmt = select(func.coalesce(func.sum(BalanceBucket.quantity), 0))
        if item_type_id is not None:
            stmt = stmt.where(BalanceBucket.item_type_id == item_type_id)
        if location_id is not None:
            stmt = stmt.where(BalanceBucket.location_id == location_id)
        return int(self.session.execute(stmt).scalar_one())
