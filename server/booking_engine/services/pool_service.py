"""Pool service for pool lifecycle and per-pool locking."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import is_postgres, utcnow
from ..core.exceptions import ConflictError, NotFoundError, OccupancyInvariantError, PoolValidationError
from ..core.locks import pool_locks
from ..core.observability import metrics_collector
from ..core.retry import retry_on_conflict
from ..models.booking_entry import ACTIVE_STATUSES, BookingEntry, BookingStatus
from ..models.claim_offer import ClaimOffer, OfferStatus
from ..models.pool import PoolKind, ResourcePool
from ..schemas.pool import CreatePoolRequest
from .notifier import BookingEvent, BookingEventKind, Notifier, dispatch_events, get_default_notifier

logger = logging.getLogger(__name__)

DEFAULT_DELETE_REASON = "Pool deleted"


class PoolService:
    """Service for resource pool operations."""

    def __init__(self, db: AsyncSession, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier or get_default_notifier()

    async def create_pool(self, request: CreatePoolRequest) -> ResourcePool:
        """
        Create a new pool.

        Creating the same pool twice with the same settings returns the
        existing one. A slot pool is created under its camp's lock so a
        concurrent camp deletion either sees the new slot or rejects it.

        Raises:
            PoolValidationError: If the parent is missing or not a camp pool
            ConflictError: If the reference is taken with different settings
        """
        kind = PoolKind(request.kind.value)

        if request.parent_pool_id is None:
            return await self._create_pool(request, kind)

        if kind != PoolKind.SLOT:
            raise PoolValidationError("Only slot pools can have a parent pool", field="parent_pool_id")

        async with pool_locks.acquire(request.parent_pool_id):
            try:
                parent = await self.get_pool_with_lock(request.parent_pool_id)
            except NotFoundError:
                parent = None
            if parent is None or parent.kind != PoolKind.CAMP:
                # Release the parent row lock
                await self.db.commit()
                raise PoolValidationError(
                    f"Parent pool {request.parent_pool_id} is not an active camp pool",
                    field="parent_pool_id",
                )
            try:
                return await self._create_pool(request, kind)
            finally:
                if self.db.in_transaction():
                    await self.db.commit()

    async def _create_pool(self, request: CreatePoolRequest, kind: PoolKind) -> ResourcePool:
        existing = await self.get_pool_by_ref(kind, request.external_ref, include_deleted=True)
        if existing is not None:
            if (
                not existing.is_deleted
                and existing.capacity == request.capacity
                and existing.accepts_waitlist == request.accepts_waitlist
                and existing.parent_pool_id == request.parent_pool_id
            ):
                logger.info(
                    "Pool creation - returning existing pool (idempotent)",
                    extra={"pool_id": existing.id, "external_ref": existing.external_ref}
                )
                return existing
            raise ConflictError(
                detail=f"A {kind.value} pool for '{request.external_ref}' already exists",
                conflicting_resource={"pool_id": existing.id, "is_deleted": existing.is_deleted},
            )

        pool = ResourcePool(
            kind=kind,
            external_ref=request.external_ref,
            label=request.label,
            parent_pool_id=request.parent_pool_id,
            capacity=request.capacity,
            occupancy=0,
            accepts_waitlist=request.accepts_waitlist,
            is_deleted=False,
        )

        self.db.add(pool)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent create for the same reference
            await self.db.rollback()
            raise ConflictError(
                detail=f"A {kind.value} pool for '{request.external_ref}' already exists"
            )
        await self.db.refresh(pool)

        metrics_collector.set_pool_gauges(pool.id, 0, 0)
        logger.info(
            "Pool created successfully",
            extra={
                "pool_id": pool.id,
                "kind": kind.value,
                "external_ref": pool.external_ref,
                "capacity": pool.capacity,
                "accepts_waitlist": pool.accepts_waitlist,
                "parent_pool_id": pool.parent_pool_id,
            }
        )

        return pool

    async def get_pool_by_id(self, pool_id: int, include_deleted: bool = False) -> Optional[ResourcePool]:
        """Get pool by ID, refreshed from the database."""
        stmt = (
            select(ResourcePool)
            .where(ResourcePool.id == pool_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            stmt = stmt.where(ResourcePool.is_deleted.is_(False))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pool_by_id_or_raise(self, pool_id: int) -> ResourcePool:
        """Get pool by ID or raise NotFoundError. Deleted pools count as missing."""
        pool = await self.get_pool_by_id(pool_id)
        if not pool:
            logger.warning("Pool not found", extra={"pool_id": pool_id})
            raise NotFoundError(resource_type="pool", resource_id=str(pool_id))
        return pool

    async def get_pool_by_ref(
        self,
        kind: PoolKind,
        external_ref: str,
        include_deleted: bool = False,
    ) -> Optional[ResourcePool]:
        """Get pool by the camp or slot id it was created for."""
        stmt = select(ResourcePool).where(
            ResourcePool.kind == PoolKind(kind),
            ResourcePool.external_ref == external_ref,
        )
        if not include_deleted:
            stmt = stmt.where(ResourcePool.is_deleted.is_(False))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pool_with_lock(self, pool_id: int) -> ResourcePool:
        """
        Load a pool for mutation inside the caller's transaction.

        Callers must already hold ``pool_locks`` for this pool. On PostgreSQL
        this additionally takes a transaction-scoped advisory lock and a row
        lock so separate processes sharing the database are serialised too.
        """
        if is_postgres(self.db):
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
                {"lock_key": f"pool:{pool_id}"}
            )

        stmt = (
            select(ResourcePool)
            .where(ResourcePool.id == pool_id, ResourcePool.is_deleted.is_(False))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        pool = result.scalar_one_or_none()
        if not pool:
            raise NotFoundError(resource_type="pool", resource_id=str(pool_id))
        return pool

    async def assert_occupancy_locked(self, pool: ResourcePool) -> None:
        """
        Check that a pool's occupancy equals its live CONFIRMED entries.

        Runs inside the caller's transaction, just before it commits. On a
        mismatch the caller's rollback discards the whole operation.

        Raises:
            OccupancyInvariantError: If the counts disagree
        """
        await self.db.flush()
        result = await self.db.execute(
            select(func.count(BookingEntry.id)).where(
                BookingEntry.pool_id == pool.id,
                BookingEntry.status == BookingStatus.CONFIRMED,
            )
        )
        confirmed_count = result.scalar_one()
        if pool.occupancy != confirmed_count:
            metrics_collector.record_occupancy_drift()
            logger.error(
                "Occupancy invariant violated - rolling back",
                extra={
                    "pool_id": pool.id,
                    "occupancy": pool.occupancy,
                    "confirmed_count": confirmed_count,
                }
            )
            raise OccupancyInvariantError(pool.id, pool.occupancy, confirmed_count)

    async def get_child_pool_ids(self, pool_id: int) -> list[int]:
        """Ids of the live slot pools under a camp pool."""
        stmt = (
            select(ResourcePool.id)
            .where(ResourcePool.parent_pool_id == pool_id, ResourcePool.is_deleted.is_(False))
            .order_by(ResourcePool.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def list_pools(self, include_deleted: bool = False) -> list[ResourcePool]:
        stmt = select(ResourcePool).order_by(ResourcePool.id)
        if not include_deleted:
            stmt = stmt.where(ResourcePool.is_deleted.is_(False))
        result = await self.db.execute(stmt)
        return list(result.scalars())

    @retry_on_conflict
    async def delete_pool(self, pool_id: int, reason: Optional[str] = None) -> ResourcePool:
        """
        Soft-delete a pool after closing out everything on it.

        Confirmed and waitlisted entries are cancelled, the open offer is
        expired and occupancy drops to zero, all in one transaction. Deleting
        a camp pool closes its slot pools the same way.

        Raises:
            NotFoundError: If the pool does not exist or is already deleted
        """
        pool = await self.get_pool_by_id_or_raise(pool_id)
        reason = reason or DEFAULT_DELETE_REASON
        now = utcnow()
        events: list[BookingEvent] = []

        # Camp before its slots; slots are created under the camp lock, so
        # the child set read here is final
        async with pool_locks.acquire(pool.id):
            try:
                pool = await self.get_pool_with_lock(pool.id)
                child_ids = await self.get_child_pool_ids(pool.id) if pool.kind == PoolKind.CAMP else []
                async with pool_locks.acquire_many(child_ids):
                    events += await self._close_pool_locked(pool, reason, now)
                    for child_id in child_ids:
                        child = await self.get_pool_with_lock(child_id)
                        events += await self._close_pool_locked(child, reason, now)
                    await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        for closed_id in [pool.id, *child_ids]:
            metrics_collector.clear_pool_gauges(closed_id)

        logger.info(
            "Pool deleted",
            extra={
                "pool_id": pool.id,
                "child_pool_ids": child_ids,
                "cancelled_entries": len(events),
                "reason": reason,
            }
        )

        await dispatch_events(self.notifier, events)
        return pool

    async def _close_pool_locked(self, pool: ResourcePool, reason: str, now: datetime) -> list[BookingEvent]:
        offers = await self.db.execute(
            select(ClaimOffer)
            .where(ClaimOffer.pool_id == pool.id, ClaimOffer.status == OfferStatus.OPEN)
            .execution_options(populate_existing=True)
        )
        for offer in offers.scalars():
            offer.status = OfferStatus.EXPIRED
            offer.resolved_at = now

        entries = await self.db.execute(
            select(BookingEntry)
            .where(BookingEntry.pool_id == pool.id, BookingEntry.status.in_(ACTIVE_STATUSES))
            .order_by(BookingEntry.created_at, BookingEntry.id)
            .execution_options(populate_existing=True)
        )

        events = []
        for entry in entries.scalars():
            entry.status = BookingStatus.CANCELLED
            entry.cancelled_at = now
            entry.cancel_reason = reason
            events.append(BookingEvent.for_entry(BookingEventKind.BOOKING_CANCELLED, entry, reason=reason))

        pool.occupancy = 0
        pool.is_deleted = True
        pool.deleted_at = now
        await self.assert_occupancy_locked(pool)
        return events
