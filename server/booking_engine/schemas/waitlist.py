"""Waitlist-related Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .booking import BookingEntry
from .offer import ClaimOffer


class GetWaitlistRequest(BaseModel):
    """Request schema for reading a pool's waitlist."""

    pool_id: int = Field(..., description="Pool whose queue to read")


class Waitlist(BaseModel):
    """Waitlist response schema: queue in FIFO order plus the outstanding offer."""

    pool_id: int = Field(..., description="Pool id")
    entries: List[BookingEntry] = Field(..., description="Waitlisted entries, head first")
    open_offer: Optional[ClaimOffer] = Field(None, description="Offer currently held by the head, if any")
