"""Background worker for expiring unclaimed offers."""

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import async_session_factory
from ..services.notifier import Notifier
from ..services.offer_service import OfferService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class OfferExpiryWorker(BaseWorker):
    """
    Background worker that expires claim offers past their deadline.

    Each expired offer moves its entry to EXPIRED and passes the spot to the
    next waitlisted entry. Reads already treat a lapsed offer as expired, so
    this worker only bounds how long a lapsed offer stays OPEN in storage.
    """

    def __init__(
        self,
        interval_seconds: float = 60,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
        notifier: Optional[Notifier] = None,
    ):
        super().__init__(name="OfferExpiry", interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.notifier = notifier
        self.expired_total = 0

    async def process(self) -> None:
        async with self.session_factory() as db:
            offer_service = OfferService(db, self.notifier)
            expired_count = await offer_service.sweep_expired_offers()

        self.expired_total += expired_count
        if expired_count > 0:
            logger.info(
                "Expired lapsed claim offers",
                extra={"expired_count": expired_count, "worker": self.name}
            )
