"""FastAPI routers package."""

from .booking import router as booking_router
from .health import router as health_router
from .metrics import router as metrics_router
from .offer import router as offer_router
from .pool import router as pool_router
from .waitlist import router as waitlist_router

__all__ = [
    "booking_router",
    "health_router",
    "metrics_router",
    "offer_router",
    "pool_router",
    "waitlist_router",
]
