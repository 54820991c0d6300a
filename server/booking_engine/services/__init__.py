"""Service layer package."""

from .booking_service import BookingService
from .capacity_service import CapacityService
from .notifier import BookingEvent, BookingEventKind, Notifier
from .offer_service import OfferService
from .pool_service import PoolService
from .waitlist_service import WaitlistService

__all__ = [
    "BookingEvent",
    "BookingEventKind",
    "BookingService",
    "CapacityService",
    "Notifier",
    "OfferService",
    "PoolService",
    "WaitlistService",
]
