"""Waitlist service: the FIFO queue as a view over the booking ledger."""

import logging
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.booking_entry import BookingEntry, BookingStatus

logger = logging.getLogger(__name__)


class WaitlistService:
    """
    Read-side of the waitlist.

    There is no queue table. The queue for a pool is its WAITLISTED entries
    ordered by ``created_at`` then ``id``, so it cannot drift from the
    ledger. Entries leave the queue by changing status, never by reordering.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _queue_query(self, pool_id: int):
        return (
            select(BookingEntry)
            .where(
                BookingEntry.pool_id == pool_id,
                BookingEntry.status == BookingStatus.WAITLISTED
            )
            .order_by(BookingEntry.created_at, BookingEntry.id)
            .execution_options(populate_existing=True)
        )

    async def get_queue(self, pool_id: int) -> list[BookingEntry]:
        """Waitlisted entries for a pool, head first."""
        result = await self.db.execute(self._queue_query(pool_id))
        return list(result.scalars())

    async def peek_head(self, pool_id: int) -> Optional[BookingEntry]:
        """The entry that would be offered the next freed spot."""
        result = await self.db.execute(self._queue_query(pool_id).limit(1))
        return result.scalar_one_or_none()

    async def queue_length(self, pool_id: int) -> int:
        stmt = select(func.count(BookingEntry.id)).where(
            BookingEntry.pool_id == pool_id,
            BookingEntry.status == BookingStatus.WAITLISTED
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def position_of(self, entry: BookingEntry) -> Optional[int]:
        """
        1-based queue position of an entry, or None when it is not waitlisted.

        Counts the waitlisted entries that sort strictly ahead of it.
        """
        if entry.status != BookingStatus.WAITLISTED:
            return None

        stmt = select(func.count(BookingEntry.id)).where(
            BookingEntry.pool_id == entry.pool_id,
            BookingEntry.status == BookingStatus.WAITLISTED,
            or_(
                BookingEntry.created_at < entry.created_at,
                and_(BookingEntry.created_at == entry.created_at, BookingEntry.id < entry.id),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar_one() + 1
