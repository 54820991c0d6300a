"""Resource pool Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PoolKind(str, Enum):
    """Pool kind enumeration."""
    CAMP = "CAMP"
    SLOT = "SLOT"


class PoolAvailability(str, Enum):
    """Whether a new reservation would be confirmed right now."""
    AVAILABLE = "available"
    FULL = "full"


class CreatePoolRequest(BaseModel):
    """Request schema for creating a pool."""

    kind: PoolKind = Field(..., description="CAMP for registration capacity, SLOT for an availability slot")
    external_ref: str = Field(..., min_length=1, max_length=128, description="Camp or slot id in the host application")
    capacity: int = Field(..., ge=1, description="Maximum simultaneous confirmed bookings")
    accepts_waitlist: bool = Field(True, description="Queue requests beyond capacity instead of rejecting them")
    parent_pool_id: Optional[int] = Field(None, description="Camp pool a slot pool belongs to")
    label: Optional[str] = Field(None, max_length=255, description="Display name")


class GetPoolRequest(BaseModel):
    """Request schema for fetching a pool by id or by external reference."""

    pool_id: Optional[int] = Field(None, description="Pool id")
    kind: Optional[PoolKind] = Field(None, description="Pool kind, with external_ref")
    external_ref: Optional[str] = Field(None, description="Camp or slot id, with kind")


class ResizePoolRequest(BaseModel):
    """Request schema for changing a pool's capacity."""

    pool_id: int = Field(..., description="Pool to resize")
    new_capacity: int = Field(..., ge=0, description="New maximum of confirmed bookings")
    reason: Optional[str] = Field(None, max_length=1000, description="Why the capacity changed")


class DeletePoolRequest(BaseModel):
    """Request schema for deleting a pool."""

    pool_id: int = Field(..., description="Pool to delete")
    reason: Optional[str] = Field(None, max_length=1000, description="Recorded on every cancelled booking")


class ListAdjustmentsRequest(BaseModel):
    """Request schema for a pool's capacity audit trail."""

    pool_id: int = Field(..., description="Pool whose adjustments to list")


class ResourcePool(BaseModel):
    """Resource pool response schema."""

    id: int = Field(..., description="Pool id")
    kind: PoolKind = Field(..., description="Pool kind")
    external_ref: str = Field(..., description="Camp or slot id in the host application")
    label: Optional[str] = Field(None, description="Display name")
    parent_pool_id: Optional[int] = Field(None, description="Owning camp pool")
    capacity: int = Field(..., description="Maximum confirmed bookings")
    occupancy: int = Field(..., description="Current confirmed bookings")
    accepts_waitlist: bool = Field(..., description="Whether overflow is queued")
    waitlist_length: int = Field(0, description="Entries currently waitlisted")
    status: PoolAvailability = Field(..., description="Derived availability")
    created_at: datetime = Field(..., description="Creation time (ISO 8601)")

    class Config:
        from_attributes = True


class CapacityAdjustment(BaseModel):
    """Capacity adjustment response schema."""

    id: int = Field(..., description="Adjustment id")
    pool_id: int = Field(..., description="Resized pool")
    capacity_before: int = Field(..., description="Capacity before the change")
    capacity_after: int = Field(..., description="Capacity after the change")
    occupancy_at_change: int = Field(..., description="Confirmed bookings when resized")
    actor: str = Field(..., description="Who resized the pool")
    reason: Optional[str] = Field(None, description="Why the capacity changed")
    created_at: datetime = Field(..., description="When the change was made (ISO 8601)")

    class Config:
        from_attributes = True


class CapacityAdjustmentList(BaseModel):
    """Audit trail response, newest first."""

    items: List[CapacityAdjustment] = Field(..., description="Adjustments")
