"""Booking ledger entry model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .claim_offer import ClaimOffer
    from .pool import ResourcePool


class BookingStatus(str, Enum):
    """Booking entry status enumeration."""
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"


# Statuses that block a second reservation for the same subject
ACTIVE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.WAITLISTED)

TERMINAL_STATUSES = (BookingStatus.CANCELLED, BookingStatus.EXPIRED, BookingStatus.REJECTED)


class BookingEntry(Base):
    """One booking attempt against a pool and its current outcome."""

    __tablename__ = "booking_entries"

    # Integer ids give the FIFO tie-break its insertion order
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    pool_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("resource_pools.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    subject_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    requester_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    status: Mapped[BookingStatus] = mapped_column(String(20), nullable=False, index=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("length(subject_id) > 0", name="ck_booking_entry_subject_not_empty"),
        CheckConstraint("length(requester_id) > 0", name="ck_booking_entry_requester_not_empty"),
        Index("ix_booking_entries_queue", "pool_id", "status", "created_at", "id"),
    )

    # Relationships
    pool: Mapped["ResourcePool"] = relationship("ResourcePool", back_populates="entries")
    offer: Mapped[Optional["ClaimOffer"]] = relationship(
        "ClaimOffer",
        back_populates="booking_entry",
        uselist=False
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<BookingEntry(id={self.id}, pool_id={self.pool_id}, subject='{self.subject_id}', "
            f"status={self.status}, created_at={self.created_at})>"
        )
