"""
DeliverySelector -- computed views over deliveries and their units.

Return progress is a projection: the persisted Delivery status stays SIGNED
while units come back, and the NOT_RETURNED / PARTIALLY_RETURNED /
FULLY_RETURNED label is derived from unit statuses on every read.
"""

from collections import Counter
from uuid import UUID

from sqlalchemy import func, select

from ppe_kernel.domain.dtos import ReturnProgress
from ppe_kernel.domain.values import ReturnCondition
from ppe_kernel.exceptions import DeliveryNotFoundError
from ppe_kernel.models.delivery import Delivery, DeliveryUnit, DeliveryUnitStatus
from ppe_kernel.selectors.base import BaseSelector


class DeliverySelector(BaseSelector[Delivery]):
    """Delivery queries."""

    def return_progress(self, delivery_id: UUID) -> ReturnProgress:
        delivery = self.session.get(Delivery, delivery_id, populate_existing=True)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)

        rows = self.session.execute(
            select(DeliveryUnit.status, DeliveryUnit.return_condition, func.count())
            .where(DeliveryUnit.delivery_id == delivery_id)
            .group_by(DeliveryUnit.status, DeliveryUnit.return_condition)
        ).all()

        counts: Counter[str] = Counter()
        for status, condition, count in rows:
            if status == DeliveryUnitStatus.RETURNED and condition == ReturnCondition.LOST:
                counts["lost"] += count
            else:
                counts[status] += count

        return ReturnProgress(
            delivery_id=delivery_id,
            delivery_status=delivery.status,
            total_units=sum(counts.values()),
            with_worker=counts[DeliveryUnitStatus.WITH_WORKER.value],
            returned=counts[DeliveryUnitStatus.RETURNED.value],
            lost=counts["lost"],
            cancelled=counts[DeliveryUnitStatus.CANCELLED.value],
        )

    def units_with_worker(self, worker_record_id: UUID) -> int:
        """Units currently held by a worker across all deliveries."""
        return self._count_units(
            worker_record_id,
            DeliveryUnit.status == DeliveryUnitStatus.WITH_WORKER.value,
        )

    def lost_units(self, worker_record_id: UUID | None = None) -> int:
        return self._count_units(
            worker_record_id,
            DeliveryUnit.status == DeliveryUnitStatus.RETURNED.value,
            DeliveryUnit.return_condition == ReturnCondition.LOST.value,
        )

    def _count_units(self, worker_record_id: UUID | None, *criteria) -> int:
        stmt = select(func.count(DeliveryUnit.id)).where(*criteria)
        if worker_record_id is not None:
            stmt = stmt.join(Delivery, DeliveryUnit.delivery_id == Delivery.id).where(
                Delivery.worker_record_id == worker_record_id
            )
        return int(self.session.execute(stmt).scalar_one())
