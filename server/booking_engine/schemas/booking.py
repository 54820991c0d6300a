"""Booking-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class BookingStatus(str, Enum):
    """Booking entry status enumeration."""
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"


class ReserveRequest(BaseModel):
    """Request schema for reserving a spot in a pool."""

    pool_id: int = Field(..., description="Pool to book")
    subject_id: str = Field(..., min_length=1, max_length=128, description="Child or participant being booked")
    requester_id: str = Field(..., min_length=1, max_length=128, description="Parent making the booking")


class CancelBookingRequest(BaseModel):
    """Request schema for cancelling a booking entry."""

    booking_entry_id: int = Field(..., description="Entry to cancel")
    reason: Optional[str] = Field(None, max_length=1000, description="Cancellation reason")


class GetBookingRequest(BaseModel):
    """Request schema for getting a booking entry."""

    booking_entry_id: int = Field(..., description="Entry to retrieve")


class ListBookingsRequest(BaseModel):
    """Request schema for listing entries by requester or by pool."""

    requester_id: Optional[str] = Field(None, max_length=128, description="Parent whose bookings to list")
    pool_id: Optional[int] = Field(None, description="Pool whose bookings to list")
    status: Optional[BookingStatus] = Field(None, description="Only entries in this status")
    limit: int = Field(100, ge=1, le=500, description="Maximum entries returned")

    @model_validator(mode="after")
    def require_filter(self) -> "ListBookingsRequest":
        if self.requester_id is None and self.pool_id is None:
            raise ValueError("Either requester_id or pool_id is required")
        return self


class BookingEntry(BaseModel):
    """Booking entry response schema."""

    id: int = Field(..., description="Entry id")
    pool_id: int = Field(..., description="Booked pool")
    subject_id: str = Field(..., description="Child or participant")
    requester_id: str = Field(..., description="Parent who booked")
    status: BookingStatus = Field(..., description="Entry status")
    queue_position: Optional[int] = Field(None, description="1-based waitlist position, only while WAITLISTED")
    created_at: datetime = Field(..., description="When the request was made (ISO 8601)")
    cancelled_at: Optional[datetime] = Field(None, description="Cancellation time")
    cancel_reason: Optional[str] = Field(None, description="Cancellation reason")

    class Config:
        from_attributes = True


class BookingEntryList(BaseModel):
    """List of booking entries."""

    items: List[BookingEntry] = Field(..., description="Entries, oldest first")
