"""Claim offer model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .booking_entry import BookingEntry
    from .pool import ResourcePool


class OfferStatus(str, Enum):
    """Claim offer status enumeration."""
    OPEN = "OPEN"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


class ClaimOffer(Base):
    """Time-boxed invitation for the head of a waitlist to take a freed spot."""

    __tablename__ = "claim_offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    pool_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("resource_pools.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # An entry is offered a spot at most once
    booking_entry_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("booking_entries.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    status: Mapped[OfferStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OfferStatus.OPEN,
        index=True
    )

    offered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("expires_at > offered_at", name="ck_claim_offer_window_positive"),
        # Backstop for the one-open-offer-per-pool rule
        Index(
            "uq_claim_offers_open_per_pool",
            "pool_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
    )

    # Relationships
    pool: Mapped["ResourcePool"] = relationship("ResourcePool", back_populates="offers")
    booking_entry: Mapped["BookingEntry"] = relationship("BookingEntry", back_populates="offer")

    def is_lapsed(self, now: datetime) -> bool:
        """True once the claim window has closed, whatever the stored status says."""
        return now >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"<ClaimOffer(id={self.id}, pool_id={self.pool_id}, entry_id={self.booking_entry_id}, "
            f"status={self.status}, expires_at={self.expires_at})>"
        )
