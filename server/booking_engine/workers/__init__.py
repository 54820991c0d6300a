"""Background workers for the camp booking engine."""

from .occupancy_audit_worker import OccupancyAuditWorker
from .offer_expiry_worker import OfferExpiryWorker

__all__ = ["OccupancyAuditWorker", "OfferExpiryWorker"]
