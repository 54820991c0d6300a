"""Background worker that audits stored occupancy against the ledger."""

import logging
from typing import Callable

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import async_session_factory
from ..core.observability import metrics_collector
from ..models.booking_entry import BookingEntry, BookingStatus
from ..models.pool import ResourcePool
from .base import BaseWorker

logger = logging.getLogger(__name__)


class OccupancyAuditWorker(BaseWorker):
    """
    Recomputes confirmed counts per live pool and compares them with the
    stored occupancy.

    Drift is logged and counted, never repaired: a mismatch means a bug or a
    manual database edit and needs a human. Also refreshes the per-pool
    occupancy and waitlist gauges.
    """

    def __init__(
        self,
        interval_seconds: float = 300,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
    ):
        super().__init__(name="OccupancyAudit", interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.last_drifted: list[int] = []

    async def process(self) -> None:
        confirmed = func.sum(case((BookingEntry.status == BookingStatus.CONFIRMED, 1), else_=0))
        waitlisted = func.sum(case((BookingEntry.status == BookingStatus.WAITLISTED, 1), else_=0))
        stmt = (
            select(
                ResourcePool.id,
                ResourcePool.occupancy,
                ResourcePool.capacity,
                func.coalesce(confirmed, 0),
                func.coalesce(waitlisted, 0),
            )
            .outerjoin(BookingEntry, BookingEntry.pool_id == ResourcePool.id)
            .where(ResourcePool.is_deleted.is_(False))
            .group_by(ResourcePool.id, ResourcePool.occupancy, ResourcePool.capacity)
        )

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            rows = result.all()

        drifted = []
        for pool_id, occupancy, capacity, confirmed_count, waitlist_length in rows:
            metrics_collector.set_pool_gauges(pool_id, occupancy, waitlist_length)
            if occupancy != confirmed_count or occupancy > capacity:
                drifted.append(pool_id)
                metrics_collector.record_occupancy_drift()
                logger.error(
                    "Pool occupancy does not match confirmed bookings",
                    extra={
                        "pool_id": pool_id,
                        "stored_occupancy": occupancy,
                        "confirmed_count": confirmed_count,
                        "capacity": capacity,
                        "worker": self.name,
                    }
                )

        self.last_drifted = drifted
        logger.debug(
            "Occupancy audit completed",
            extra={"pools_checked": len(rows), "pools_drifted": len(drifted), "worker": self.name}
        )
