"""Claim offer service: waitlist promotion, claims and expiry."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    CapacityExceededError,
    NotFoundError,
    OfferAlreadyResolvedError,
    OfferExpiredError,
)
from ..core.locks import pool_locks
from ..core.observability import get_tracer, metrics_collector
from ..core.retry import retry_on_conflict
from ..models.booking_entry import BookingEntry, BookingStatus
from ..models.claim_offer import ClaimOffer, OfferStatus
from ..models.pool import ResourcePool
from .notifier import BookingEvent, BookingEventKind, Notifier, dispatch_events, get_default_notifier
from .pool_service import PoolService
from .transitions import validate_status_transition
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class OfferService:
    """
    Service for claim offers.

    Methods ending in ``_locked`` run inside a transaction the caller owns
    and require the caller to hold the pool lock. They flush but never
    commit, and return the events to dispatch once the caller commits.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        offer_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.notifier = notifier or get_default_notifier()
        self.offer_window = offer_window or timedelta(seconds=settings.offer_window_seconds)
        self.pool_service = PoolService(db, self.notifier)
        self.waitlist_service = WaitlistService(db)

    async def get_offer_by_id(self, offer_id: int) -> Optional[ClaimOffer]:
        stmt = (
            select(ClaimOffer)
            .where(ClaimOffer.id == offer_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_offer_by_id_or_raise(self, offer_id: int) -> ClaimOffer:
        offer = await self.get_offer_by_id(offer_id)
        if not offer:
            logger.warning("Claim offer not found", extra={"offer_id": offer_id})
            raise NotFoundError(resource_type="offer", resource_id=str(offer_id))
        return offer

    async def get_open_offer(self, pool_id: int) -> Optional[ClaimOffer]:
        """The pool's outstanding offer, if any."""
        stmt = (
            select(ClaimOffer)
            .where(ClaimOffer.pool_id == pool_id, ClaimOffer.status == OfferStatus.OPEN)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _get_entry(self, entry_id: int) -> BookingEntry:
        stmt = (
            select(BookingEntry)
            .where(BookingEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def promote_next_locked(self, pool: ResourcePool, now: datetime) -> list[BookingEvent]:
        """
        Offer a freed spot to the head of the pool's waitlist.

        Does nothing while another offer is open, when the pool has no free
        spot, or when nobody is waiting. The head stays WAITLISTED and does
        not count towards occupancy until it claims.
        """
        if await self.get_open_offer(pool.id) is not None:
            return []
        if pool.occupancy >= pool.capacity:
            return []

        head = await self.waitlist_service.peek_head(pool.id)
        if head is None:
            return []

        offer = ClaimOffer(
            pool_id=pool.id,
            booking_entry_id=head.id,
            status=OfferStatus.OPEN,
            offered_at=now,
            expires_at=now + self.offer_window,
        )
        self.db.add(offer)
        await self.db.flush()

        metrics_collector.record_offer_created()
        logger.info(
            "Claim offer created for waitlist head",
            extra={
                "offer_id": offer.id,
                "pool_id": pool.id,
                "booking_entry_id": head.id,
                "subject_id": head.subject_id,
                "expires_at": offer.expires_at.isoformat(),
            }
        )

        return [
            BookingEvent.for_entry(
                BookingEventKind.SPOT_OFFERED,
                head,
                offer_id=offer.id,
                expires_at=offer.expires_at,
            )
        ]

    async def withdraw_offer_locked(self, offer: ClaimOffer, now: datetime) -> None:
        """Close an open offer whose entry left the queue some other way."""
        offer.status = OfferStatus.EXPIRED
        offer.resolved_at = now
        await self.db.flush()

    async def _expire_offer_locked(self, offer: ClaimOffer, now: datetime) -> list[BookingEvent]:
        entry = await self._get_entry(offer.booking_entry_id)
        validate_status_transition(entry.id, entry.status, BookingStatus.EXPIRED)

        offer.status = OfferStatus.EXPIRED
        offer.resolved_at = now
        entry.status = BookingStatus.EXPIRED
        await self.db.flush()

        metrics_collector.record_offer_expired()
        logger.info(
            "Claim offer expired unclaimed",
            extra={
                "offer_id": offer.id,
                "pool_id": offer.pool_id,
                "booking_entry_id": entry.id,
                "expired_at": offer.expires_at.isoformat(),
            }
        )

        return [
            BookingEvent.for_entry(
                BookingEventKind.OFFER_EXPIRED,
                entry,
                offer_id=offer.id,
                expires_at=offer.expires_at,
            )
        ]

    async def expire_stale_offer_locked(self, pool: ResourcePool, now: datetime) -> list[BookingEvent]:
        """
        Expire the pool's open offer if its window has closed and pass the
        spot on to the next entry in line.

        New offers always expire after ``now``, so one pass is enough.
        """
        offer = await self.get_open_offer(pool.id)
        if offer is None or not offer.is_lapsed(now):
            return []

        events = await self._expire_offer_locked(offer, now)
        events += await self.promote_next_locked(pool, now)
        return events

    @retry_on_conflict
    async def promote_next(self, pool_id: int, now: Optional[datetime] = None) -> Optional[ClaimOffer]:
        """
        Standalone promotion for a pool.

        Returns:
            The pool's open offer after promotion, if there is one
        """
        now = now or utcnow()
        events: list[BookingEvent] = []

        with tracer.start_as_current_span("offers.promote_next") as span:
            span.set_attribute("pool.id", pool_id)
            async with pool_locks.acquire(pool_id):
                try:
                    pool = await self.pool_service.get_pool_with_lock(pool_id)
                    events += await self.expire_stale_offer_locked(pool, now)
                    events += await self.promote_next_locked(pool, now)
                    offer = await self.get_open_offer(pool.id)
                    await self.pool_service.assert_occupancy_locked(pool)
                    await self.db.commit()
                except Exception:
                    await self.db.rollback()
                    raise

        await dispatch_events(self.notifier, events)
        return offer

    @retry_on_conflict
    async def claim(self, offer_id: int, now: Optional[datetime] = None) -> BookingEntry:
        """
        Convert an open offer into a confirmed booking.

        The deadline is checked against ``now`` whether or not the sweep has
        run yet. A lapsed offer is expired on the spot and the next entry is
        promoted before the error is returned.

        Raises:
            NotFoundError: If the offer or its pool does not exist
            OfferAlreadyResolvedError: If the offer was already claimed or expired
            OfferExpiredError: If the claim window has closed
            CapacityExceededError: If the pool shrank and no spot is left
        """
        now = now or utcnow()
        offer = await self.get_offer_by_id_or_raise(offer_id)
        pool_id = offer.pool_id
        events: list[BookingEvent] = []
        error: Optional[Exception] = None

        with tracer.start_as_current_span("offers.claim") as span:
            span.set_attribute("pool.id", pool_id)
            span.set_attribute("offer.id", offer_id)
            async with pool_locks.acquire(pool_id):
                try:
                    pool = await self.pool_service.get_pool_with_lock(pool_id)
                    offer = await self.get_offer_by_id_or_raise(offer_id)

                    if offer.status == OfferStatus.EXPIRED and offer.is_lapsed(now):
                        # Swept before the caller got here: report the lapsed window
                        raise OfferExpiredError(offer_id, offer.expires_at)

                    if offer.status != OfferStatus.OPEN:
                        logger.warning(
                            "Claim rejected - offer already resolved",
                            extra={"offer_id": offer_id, "offer_status": offer.status}
                        )
                        raise OfferAlreadyResolvedError(offer_id, OfferStatus(offer.status).value)

                    if offer.is_lapsed(now):
                        logger.warning(
                            "Claim rejected - offer window lapsed",
                            extra={
                                "offer_id": offer_id,
                                "expires_at": offer.expires_at.isoformat(),
                                "now": now.isoformat(),
                            }
                        )
                        error = OfferExpiredError(offer_id, offer.expires_at)
                        events += await self.expire_stale_offer_locked(pool, now)
                        await self.pool_service.assert_occupancy_locked(pool)
                        await self.db.commit()
                        entry = None
                    else:
                        if pool.occupancy >= pool.capacity:
                            raise CapacityExceededError(pool.id, pool.capacity, pool.occupancy)

                        entry = await self._get_entry(offer.booking_entry_id)
                        validate_status_transition(entry.id, entry.status, BookingStatus.CONFIRMED)

                        offer.status = OfferStatus.CLAIMED
                        offer.resolved_at = now
                        entry.status = BookingStatus.CONFIRMED
                        pool.occupancy += 1
                        await self.db.flush()

                        events.append(
                            BookingEvent.for_entry(BookingEventKind.SPOT_CLAIMED, entry, offer_id=offer.id)
                        )
                        # Capacity may have grown while the offer was out
                        events += await self.promote_next_locked(pool, now)
                        await self.pool_service.assert_occupancy_locked(pool)
                        await self.db.commit()
                except Exception:
                    await self.db.rollback()
                    raise

        await dispatch_events(self.notifier, events)

        if error is not None:
            raise error

        metrics_collector.record_offer_claimed()
        logger.info(
            "Claim offer claimed - booking confirmed",
            extra={
                "offer_id": offer_id,
                "pool_id": pool_id,
                "booking_entry_id": entry.id,
                "occupancy": pool.occupancy,
                "capacity": pool.capacity,
            }
        )
        return entry

    async def sweep_expired_offers(self, now: Optional[datetime] = None, batch_size: int = 100) -> int:
        """
        Expire every open offer past its deadline and promote the next entry
        on each affected pool.

        Each pool is handled in its own locked transaction; a failure on one
        pool is logged and does not stop the others.

        Returns:
            Number of offers expired
        """
        now = now or utcnow()

        stmt = (
            select(ClaimOffer.pool_id)
            .where(ClaimOffer.status == OfferStatus.OPEN, ClaimOffer.expires_at <= now)
            .distinct()
            .limit(batch_size)
        )
        result = await self.db.execute(stmt)
        pool_ids = list(result.scalars())

        expired_count = 0
        with tracer.start_as_current_span("offers.sweep") as span:
            span.set_attribute("pools.count", len(pool_ids))
            for pool_id in pool_ids:
                try:
                    expired_count += await self._sweep_pool(pool_id, now)
                except Exception as e:
                    logger.error(
                        "Failed to sweep expired offers for pool",
                        extra={"pool_id": pool_id, "error": str(e)}
                    )
                    continue

        if expired_count > 0:
            logger.info(
                "Offer expiry sweep completed",
                extra={"expired_count": expired_count, "pool_count": len(pool_ids)}
            )

        return expired_count

    @retry_on_conflict
    async def _sweep_pool(self, pool_id: int, now: datetime) -> int:
        async with pool_locks.acquire(pool_id):
            try:
                pool = await self.pool_service.get_pool_with_lock(pool_id)
                events = await self.expire_stale_offer_locked(pool, now)
                await self.pool_service.assert_occupancy_locked(pool)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        await dispatch_events(self.notifier, events)
        return sum(1 for event in events if event.kind == BookingEventKind.OFFER_EXPIRED)
