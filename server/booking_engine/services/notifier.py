"""Booking events and the notifier collaborators that deliver them."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from ..core.config import settings
from ..core.database import utcnow
from ..core.observability import get_logger, metrics_collector

logger = logging.getLogger(__name__)


class BookingEventKind(str, Enum):
    """State changes the notifier is told about."""
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_WAITLISTED = "booking_waitlisted"
    BOOKING_CANCELLED = "booking_cancelled"
    SPOT_OFFERED = "spot_offered"
    SPOT_CLAIMED = "spot_claimed"
    OFFER_EXPIRED = "offer_expired"


# Waitlist email variant each waitlist-related event maps to
WAITLIST_NOTICE = {
    BookingEventKind.BOOKING_WAITLISTED: "added",
    BookingEventKind.SPOT_OFFERED: "spot_available",
}


class BookingEvent(BaseModel):
    """A single booking state change, as handed to the notifier."""

    kind: BookingEventKind = Field(..., description="What happened")
    pool_id: int = Field(..., description="Pool the entry belongs to")
    booking_entry_id: int = Field(..., description="Affected ledger entry")
    subject_id: str = Field(..., description="Child or participant")
    requester_id: str = Field(..., description="Parent who made the booking")
    occurred_at: datetime = Field(default_factory=utcnow, description="When the transition committed")
    offer_id: Optional[int] = Field(None, description="Claim offer, for offer events")
    expires_at: Optional[datetime] = Field(None, description="Claim deadline, for spot_offered")
    reason: Optional[str] = Field(None, description="Cancellation reason, when given")

    @property
    def waitlist_notice(self) -> Optional[str]:
        return WAITLIST_NOTICE.get(self.kind)

    @classmethod
    def for_entry(cls, kind: BookingEventKind, entry, **extra) -> "BookingEvent":
        """Build an event from a BookingEntry row."""
        return cls(
            kind=kind,
            pool_id=entry.pool_id,
            booking_entry_id=entry.id,
            subject_id=entry.subject_id,
            requester_id=entry.requester_id,
            **extra,
        )


class Notifier(ABC):
    """Receives booking events and turns them into user-facing messages."""

    @abstractmethod
    async def notify(self, event: BookingEvent) -> None:
        """Deliver one event. May raise; callers treat failures as non-fatal."""


class LoggingNotifier(Notifier):
    """Notifier that only writes events to the structured log."""

    def __init__(self):
        self.log = get_logger("booking_engine.notifications")

    async def notify(self, event: BookingEvent) -> None:
        self.log.info(
            "booking_event",
            kind=event.kind.value,
            pool_id=event.pool_id,
            booking_entry_id=event.booking_entry_id,
            subject_id=event.subject_id,
            requester_id=event.requester_id,
            offer_id=event.offer_id,
            expires_at=event.expires_at.isoformat() if event.expires_at else None,
            waitlist_notice=event.waitlist_notice,
        )


class WebhookNotifier(Notifier):
    """
    Notifier that POSTs each event as JSON to the messaging service.

    Template rendering and email/SMS delivery happen on the receiving side.
    """

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def notify(self, event: BookingEvent) -> None:
        payload = event.model_dump(mode="json")
        payload["waitlist_notice"] = event.waitlist_notice

        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


class CompositeNotifier(Notifier):
    """Fan an event out to several notifiers; every one is attempted."""

    def __init__(self, notifiers: Sequence[Notifier]):
        self.notifiers = list(notifiers)

    async def notify(self, event: BookingEvent) -> None:
        errors = []
        for notifier in self.notifiers:
            try:
                await notifier.notify(event)
            except Exception as e:
                errors.append(e)
        if errors:
            raise errors[0]


async def dispatch_events(notifier: Notifier, events: Iterable[BookingEvent]) -> int:
    """
    Hand committed events to the notifier.

    Delivery failures are logged and counted, never raised, so a broken
    mail pipeline cannot undo or block a booking transition.

    Returns:
        Number of events delivered without error
    """
    delivered = 0
    for event in events:
        try:
            await notifier.notify(event)
            delivered += 1
        except Exception as e:
            metrics_collector.record_notification_failure(event.kind.value)
            logger.error(
                "Notifier failed to deliver booking event",
                exc_info=True,
                extra={
                    "event_kind": event.kind.value,
                    "pool_id": event.pool_id,
                    "booking_entry_id": event.booking_entry_id,
                    "error": str(e),
                }
            )
    return delivered


_default_notifier: Optional[Notifier] = None


def get_default_notifier() -> Notifier:
    """Notifier built from settings: log always, webhook when configured."""
    global _default_notifier
    if _default_notifier is None:
        if settings.notifier_webhook_url:
            _default_notifier = CompositeNotifier([
                LoggingNotifier(),
                WebhookNotifier(settings.notifier_webhook_url, timeout=settings.notifier_timeout_seconds),
            ])
        else:
            _default_notifier = LoggingNotifier()
    return _default_notifier
