"""Health-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health status enumeration."""
    HEALTHY = "healthy"


class HealthResponse(BaseModel):
    """Health ping response schema."""

    status: HealthStatus = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current server time (ISO 8601)")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness response: overall status plus one entry per dependency."""

    status: str = Field(..., description="ready or not_ready")
    service: str = Field(..., description="Service name")
    checks: Dict[str, str] = Field(..., description="Dependency name to ok or error")
