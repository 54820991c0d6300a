"""Capacity adjustment model definition."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .pool import ResourcePool


class CapacityAdjustment(Base):
    """Audit record of an administrator resizing a pool."""

    __tablename__ = "capacity_adjustments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    pool_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("resource_pools.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    capacity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    occupancy_at_change: Mapped[int] = mapped_column(Integer, nullable=False)

    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint("capacity_after > 0", name="ck_capacity_adjustment_after_positive"),
        CheckConstraint(
            "occupancy_at_change <= capacity_after",
            name="ck_capacity_adjustment_occupancy_fits"
        ),
        CheckConstraint("length(actor) > 0", name="ck_capacity_adjustment_actor_not_empty"),
    )

    pool: Mapped["ResourcePool"] = relationship("ResourcePool", back_populates="adjustments")

    @property
    def delta(self) -> int:
        return self.capacity_after - self.capacity_before

    def __repr__(self) -> str:
        return (
            f"<CapacityAdjustment(id={self.id}, pool_id={self.pool_id}, "
            f"{self.capacity_before}->{self.capacity_after}, actor='{self.actor}')>"
        )
