"""Booking service: the ledger behind reserve and cancel."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import CapacityExceededError, DuplicateBookingError, NotFoundError
from ..core.locks import pool_locks
from ..core.observability import get_tracer, metrics_collector
from ..core.retry import retry_on_conflict
from ..models.booking_entry import ACTIVE_STATUSES, BookingEntry, BookingStatus
from ..models.pool import PoolKind, ResourcePool
from .notifier import BookingEvent, BookingEventKind, Notifier, dispatch_events, get_default_notifier
from .offer_service import OfferService
from .pool_service import PoolService
from .transitions import validate_status_transition
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

CASCADE_CANCEL_REASON = "Camp registration cancelled"


class BookingService:
    """Service for booking ledger operations."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        offer_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.notifier = notifier or get_default_notifier()
        self.pool_service = PoolService(db, self.notifier)
        self.waitlist_service = WaitlistService(db)
        self.offer_service = OfferService(db, self.notifier, offer_window)

    @retry_on_conflict
    async def reserve(
        self,
        pool_id: int,
        subject_id: str,
        requester_id: str,
        now: Optional[datetime] = None,
    ) -> BookingEntry:
        """
        Book a subject into a pool.

        A free spot confirms the entry and takes occupancy in the same
        transaction. Latecomers never jump the queue: while anyone is
        waitlisted (including a head holding an open offer) new requests
        join the tail.

        Returns:
            The CONFIRMED or WAITLISTED entry

        Raises:
            NotFoundError: If the pool does not exist
            DuplicateBookingError: If the subject already holds an active entry
            CapacityExceededError: If the pool is full and takes no waitlist;
                a REJECTED entry is recorded and its id included
        """
        now = now or utcnow()
        events: list[BookingEvent] = []
        error: Optional[CapacityExceededError] = None

        pool = await self.pool_service.get_pool_by_id_or_raise(pool_id)
        # A slot booking holds its camp's lock too, so a camp cancellation
        # cannot miss a slot entry made while it waits
        parent_ids = [pool.parent_pool_id] if pool.parent_pool_id is not None else []

        with tracer.start_as_current_span("booking.reserve") as span:
            span.set_attribute("pool.id", pool_id)
            async with pool_locks.acquire_many(parent_ids), pool_locks.acquire(pool_id):
                try:
                    for parent_id in parent_ids:
                        await self.pool_service.get_pool_with_lock(parent_id)
                    pool = await self.pool_service.get_pool_with_lock(pool_id)
                    events += await self.offer_service.expire_stale_offer_locked(pool, now)

                    existing = await self._find_active_entry(pool.id, subject_id)
                    if existing is not None:
                        metrics_collector.record_reservation(PoolKind(pool.kind).value, "duplicate")
                        logger.warning(
                            "Reservation rejected - duplicate booking",
                            extra={
                                "pool_id": pool.id,
                                "subject_id": subject_id,
                                "existing_entry_id": existing.id,
                                "existing_status": existing.status,
                            }
                        )
                        raise DuplicateBookingError(
                            pool.id, subject_id, existing.id, BookingStatus(existing.status).value
                        )

                    queue_length = await self.waitlist_service.queue_length(pool.id)
                    if pool.occupancy < pool.capacity and queue_length == 0:
                        status = BookingStatus.CONFIRMED
                        pool.occupancy += 1
                    elif pool.accepts_waitlist:
                        status = BookingStatus.WAITLISTED
                    else:
                        status = BookingStatus.REJECTED

                    entry = BookingEntry(
                        pool_id=pool.id,
                        subject_id=subject_id,
                        requester_id=requester_id,
                        status=status,
                        created_at=now,
                    )
                    self.db.add(entry)
                    await self.db.flush()

                    if status == BookingStatus.CONFIRMED:
                        events.append(BookingEvent.for_entry(BookingEventKind.BOOKING_CONFIRMED, entry))
                    elif status == BookingStatus.WAITLISTED:
                        events.append(BookingEvent.for_entry(BookingEventKind.BOOKING_WAITLISTED, entry))
                    else:
                        error = CapacityExceededError(
                            pool.id, pool.capacity, pool.occupancy, booking_entry_id=entry.id
                        )

                    await self.pool_service.assert_occupancy_locked(pool)
                    await self.db.commit()
                except Exception:
                    await self.db.rollback()
                    raise

        metrics_collector.record_reservation(PoolKind(pool.kind).value, status.value.lower())
        logger.info(
            "Reservation recorded",
            extra={
                "booking_entry_id": entry.id,
                "pool_id": pool.id,
                "subject_id": subject_id,
                "requester_id": requester_id,
                "status": status.value,
                "occupancy": pool.occupancy,
                "capacity": pool.capacity,
            }
        )

        await dispatch_events(self.notifier, events)

        if error is not None:
            raise error
        return entry

    @retry_on_conflict
    async def cancel(
        self,
        booking_entry_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingEntry:
        """
        Cancel a confirmed or waitlisted entry.

        Cancelling a confirmed entry frees its spot and promotes the head of
        the waitlist. Cancelling a waitlisted entry just drops it from the
        queue, unless it held the open offer, in which case the offer is
        withdrawn and passed on. Cancelling an entry on a camp pool also
        cancels the subject's active entries on that camp's slot pools.
        Cancelling an already cancelled entry returns it unchanged.

        Raises:
            NotFoundError: If the entry or its pool does not exist
            InvalidTransitionError: If the entry is EXPIRED or REJECTED
        """
        now = now or utcnow()
        entry = await self.get_entry_by_id_or_raise(booking_entry_id)
        if entry.status == BookingStatus.CANCELLED:
            logger.info(
                "Booking entry already cancelled - returning existing entry",
                extra={"booking_entry_id": booking_entry_id}
            )
            return entry

        pool = await self.pool_service.get_pool_by_id_or_raise(entry.pool_id)
        child_ids: list[int] = []
        events: list[BookingEvent] = []

        with tracer.start_as_current_span("booking.cancel") as span:
            span.set_attribute("pool.id", pool.id)
            span.set_attribute("booking_entry.id", booking_entry_id)
            # Camp before its slots, slots in key order. Slot bookings take
            # the camp lock as well, so the slots found here are final.
            async with pool_locks.acquire(pool.id):
                try:
                    pool = await self.pool_service.get_pool_with_lock(pool.id)
                    entry = await self._get_entry_for_update(booking_entry_id)

                    if entry.status == BookingStatus.CANCELLED:
                        # Cancelled by a concurrent request or a camp cascade
                        await self.db.commit()
                        return entry

                    if pool.kind == PoolKind.CAMP:
                        child_ids = await self._child_pools_with_subject(pool.id, entry.subject_id)

                    async with pool_locks.acquire_many(child_ids):
                        events += await self.offer_service.expire_stale_offer_locked(pool, now)
                        events += await self._cancel_locked(pool, entry, reason, now)
                        await self.pool_service.assert_occupancy_locked(pool)

                        for child_id in child_ids:
                            child = await self.pool_service.get_pool_with_lock(child_id)
                            child_entry = await self._find_active_entry(child.id, entry.subject_id)
                            if child_entry is None:
                                continue
                            events += await self._cancel_locked(
                                child, child_entry, reason or CASCADE_CANCEL_REASON, now
                            )
                            await self.pool_service.assert_occupancy_locked(child)

                        await self.db.commit()
                except Exception:
                    await self.db.rollback()
                    raise

        logger.info(
            "Booking entry cancelled",
            extra={
                "booking_entry_id": entry.id,
                "pool_id": pool.id,
                "reason": reason,
                "occupancy": pool.occupancy,
                "cascaded_pools": child_ids,
            }
        )

        await dispatch_events(self.notifier, events)
        return entry

    async def _cancel_locked(
        self,
        pool: ResourcePool,
        entry: BookingEntry,
        reason: Optional[str],
        now: datetime,
    ) -> list[BookingEvent]:
        previous = BookingStatus(entry.status)
        validate_status_transition(entry.id, previous, BookingStatus.CANCELLED)

        entry.status = BookingStatus.CANCELLED
        entry.cancelled_at = now
        entry.cancel_reason = reason
        events = [BookingEvent.for_entry(BookingEventKind.BOOKING_CANCELLED, entry, reason=reason)]

        if previous == BookingStatus.CONFIRMED:
            pool.occupancy -= 1
            await self.db.flush()
            events += await self.offer_service.promote_next_locked(pool, now)
        else:
            offer = await self.offer_service.get_open_offer(pool.id)
            if offer is not None and offer.booking_entry_id == entry.id:
                await self.offer_service.withdraw_offer_locked(offer, now)
                events += await self.offer_service.promote_next_locked(pool, now)
            else:
                await self.db.flush()

        metrics_collector.record_cancellation(previous.value)
        return events

    async def get_entry_by_id(self, booking_entry_id: int) -> Optional[BookingEntry]:
        """Get booking entry by ID."""
        stmt = (
            select(BookingEntry)
            .where(BookingEntry.id == booking_entry_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_entry_by_id_or_raise(self, booking_entry_id: int) -> BookingEntry:
        """Get booking entry by ID or raise NotFoundError."""
        entry = await self.get_entry_by_id(booking_entry_id)
        if not entry:
            logger.warning("Booking entry not found", extra={"booking_entry_id": booking_entry_id})
            raise NotFoundError(resource_type="booking entry", resource_id=str(booking_entry_id))
        return entry

    async def _get_entry_for_update(self, booking_entry_id: int) -> BookingEntry:
        stmt = (
            select(BookingEntry)
            .where(BookingEntry.id == booking_entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def _find_active_entry(self, pool_id: int, subject_id: str) -> Optional[BookingEntry]:
        stmt = (
            select(BookingEntry)
            .where(
                BookingEntry.pool_id == pool_id,
                BookingEntry.subject_id == subject_id,
                BookingEntry.status.in_(ACTIVE_STATUSES)
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _child_pools_with_subject(self, pool_id: int, subject_id: str) -> list[int]:
        stmt = (
            select(ResourcePool.id)
            .join(BookingEntry, BookingEntry.pool_id == ResourcePool.id)
            .where(
                ResourcePool.parent_pool_id == pool_id,
                ResourcePool.is_deleted.is_(False),
                BookingEntry.subject_id == subject_id,
                BookingEntry.status.in_(ACTIVE_STATUSES)
            )
            .distinct()
        )
        result = await self.db.execute(stmt)
        return sorted(result.scalars())

    async def get_queue_position(self, entry: BookingEntry) -> Optional[int]:
        return await self.waitlist_service.position_of(entry)

    async def list_entries(
        self,
        requester_id: Optional[str] = None,
        pool_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 100,
    ) -> list[BookingEntry]:
        """
        List entries for a requester (their bookings across pools) or for a
        pool, oldest first.
        """
        stmt = select(BookingEntry)
        if requester_id is not None:
            stmt = stmt.where(BookingEntry.requester_id == requester_id)
        if pool_id is not None:
            stmt = stmt.where(BookingEntry.pool_id == pool_id)
        if status is not None:
            stmt = stmt.where(BookingEntry.status == BookingStatus(status))
        stmt = stmt.order_by(BookingEntry.created_at, BookingEntry.id).limit(limit)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())
