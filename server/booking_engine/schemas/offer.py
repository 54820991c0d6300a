"""Claim offer Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .booking import BookingEntry


class OfferStatus(str, Enum):
    """Claim offer status enumeration."""
    OPEN = "OPEN"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


class ClaimOfferRequest(BaseModel):
    """Request schema for claiming an offered spot."""

    offer_id: int = Field(..., description="Offer to claim")


class GetOfferRequest(BaseModel):
    """Request schema for getting an offer."""

    offer_id: int = Field(..., description="Offer to retrieve")


class ClaimOffer(BaseModel):
    """Claim offer response schema."""

    id: int = Field(..., description="Offer id")
    pool_id: int = Field(..., description="Pool with the freed spot")
    booking_entry_id: int = Field(..., description="Waitlisted entry the spot is offered to")
    status: OfferStatus = Field(..., description="Offer status")
    offered_at: datetime = Field(..., description="When the offer was made (ISO 8601)")
    expires_at: datetime = Field(..., description="Claim deadline (ISO 8601)")
    resolved_at: Optional[datetime] = Field(None, description="When the offer was claimed or expired")

    class Config:
        from_attributes = True


class ClaimResult(BaseModel):
    """Response for a successful claim."""

    offer: ClaimOffer = Field(..., description="The claimed offer")
    booking: BookingEntry = Field(..., description="The now-confirmed entry")


class SweepResult(BaseModel):
    """Response for a manual expiry sweep."""

    expired_count: int = Field(..., ge=0, description="Offers expired by this sweep")
