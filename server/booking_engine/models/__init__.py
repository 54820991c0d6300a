"""Models module exporting all database models."""

from .booking_entry import ACTIVE_STATUSES, TERMINAL_STATUSES, BookingEntry, BookingStatus
from .capacity_adjustment import CapacityAdjustment
from .claim_offer import ClaimOffer, OfferStatus
from .pool import PoolKind, ResourcePool

__all__ = [
    # Pools
    "ResourcePool",
    "PoolKind",
    "CapacityAdjustment",

    # Ledger
    "BookingEntry",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",

    # Offers
    "ClaimOffer",
    "OfferStatus",
]
