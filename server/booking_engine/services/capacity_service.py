"""Capacity service: administrative resizing of pools."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import InvalidCapacityError
from ..core.locks import pool_locks
from ..core.observability import get_tracer
from ..core.retry import retry_on_conflict
from ..models.capacity_adjustment import CapacityAdjustment
from ..models.pool import ResourcePool
from .notifier import BookingEvent, Notifier, dispatch_events, get_default_notifier
from .offer_service import OfferService
from .pool_service import PoolService

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class CapacityService:
    """Service for pool capacity changes and their audit trail."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        offer_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.notifier = notifier or get_default_notifier()
        self.pool_service = PoolService(db, self.notifier)
        self.offer_service = OfferService(db, self.notifier, offer_window)

    @retry_on_conflict
    async def resize_pool(
        self,
        pool_id: int,
        new_capacity: int,
        actor: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResourcePool:
        """
        Change a pool's capacity.

        Capacity can never drop below the spots already taken; existing
        confirmations are never revoked. Growing a pool with a waitlist
        offers the new spot to the head of the queue. Every change,
        including a no-op, is recorded as an adjustment.

        Raises:
            NotFoundError: If the pool does not exist
            InvalidCapacityError: If the new capacity is below occupancy or below one
        """
        now = now or utcnow()
        events: list[BookingEvent] = []

        with tracer.start_as_current_span("capacity.resize") as span:
            span.set_attribute("pool.id", pool_id)
            span.set_attribute("capacity.new", new_capacity)
            async with pool_locks.acquire(pool_id):
                try:
                    pool = await self.pool_service.get_pool_with_lock(pool_id)
                    if new_capacity < max(1, pool.occupancy):
                        logger.warning(
                            "Resize rejected - capacity below occupancy",
                            extra={
                                "pool_id": pool.id,
                                "requested_capacity": new_capacity,
                                "occupancy": pool.occupancy,
                            }
                        )
                        raise InvalidCapacityError(pool.id, new_capacity, pool.occupancy)

                    previous_capacity = pool.capacity
                    pool.capacity = new_capacity
                    self.db.add(
                        CapacityAdjustment(
                            pool_id=pool.id,
                            capacity_before=previous_capacity,
                            capacity_after=new_capacity,
                            occupancy_at_change=pool.occupancy,
                            actor=actor,
                            reason=reason,
                            created_at=now,
                        )
                    )
                    await self.db.flush()

                    if new_capacity > previous_capacity:
                        events += await self.offer_service.expire_stale_offer_locked(pool, now)
                        events += await self.offer_service.promote_next_locked(pool, now)

                    await self.pool_service.assert_occupancy_locked(pool)
                    await self.db.commit()
                except Exception:
                    await self.db.rollback()
                    raise

        logger.info(
            "Pool capacity changed",
            extra={
                "pool_id": pool.id,
                "capacity_before": previous_capacity,
                "capacity_after": new_capacity,
                "occupancy": pool.occupancy,
                "actor": actor,
                "reason": reason,
            }
        )

        await dispatch_events(self.notifier, events)
        return pool

    async def list_adjustments(self, pool_id: int, limit: int = 100) -> list[CapacityAdjustment]:
        """Adjustments for a pool, newest first."""
        await self.pool_service.get_pool_by_id_or_raise(pool_id)
        stmt = (
            select(CapacityAdjustment)
            .where(CapacityAdjustment.pool_id == pool_id)
            .order_by(CapacityAdjustment.created_at.desc(), CapacityAdjustment.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())
