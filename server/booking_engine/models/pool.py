"""Resource pool model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .booking_entry import BookingEntry
    from .capacity_adjustment import CapacityAdjustment
    from .claim_offer import ClaimOffer


class PoolKind(str, Enum):
    """What a pool's capacity belongs to."""
    CAMP = "CAMP"
    SLOT = "SLOT"


class ResourcePool(Base):
    """
    One capacity-bounded bookable unit.

    ``occupancy`` is a stored counter that always equals the number of
    CONFIRMED booking entries on the pool. It is only changed in the same
    transaction as the entry status change that justifies it.
    """

    __tablename__ = "resource_pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    kind: Mapped[PoolKind] = mapped_column(String(10), nullable=False, index=True)
    # Camp or slot id in the surrounding application
    external_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Slot pools may hang off the camp they belong to
    parent_pool_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("resource_pools.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    occupancy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    accepts_waitlist: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_pool_capacity_positive"),
        CheckConstraint("occupancy >= 0", name="ck_pool_occupancy_non_negative"),
        CheckConstraint("occupancy <= capacity", name="ck_pool_occupancy_lte_capacity"),
        CheckConstraint("length(external_ref) > 0", name="ck_pool_external_ref_not_empty"),
        UniqueConstraint("kind", "external_ref", name="uq_pool_kind_external_ref"),
    )

    # Relationships
    parent: Mapped[Optional["ResourcePool"]] = relationship(
        "ResourcePool",
        remote_side=[id],
        back_populates="children"
    )
    children: Mapped[list["ResourcePool"]] = relationship("ResourcePool", back_populates="parent")
    entries: Mapped[list["BookingEntry"]] = relationship("BookingEntry", back_populates="pool")
    offers: Mapped[list["ClaimOffer"]] = relationship("ClaimOffer", back_populates="pool")
    adjustments: Mapped[list["CapacityAdjustment"]] = relationship(
        "CapacityAdjustment",
        back_populates="pool",
        cascade="all, delete-orphan"
    )

    @property
    def remaining(self) -> int:
        """Spots not taken by confirmed bookings."""
        return self.capacity - self.occupancy

    def __repr__(self) -> str:
        return (
            f"<ResourcePool(id={self.id}, kind={self.kind}, ref='{self.external_ref}', "
            f"occupancy={self.occupancy}/{self.capacity}, waitlist={self.accepts_waitlist})>"
        )
