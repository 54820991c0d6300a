"""Common Pydantic schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Violation(BaseModel):
    """A single failed field in a request body."""

    path: str = Field(..., description="Dotted path to the invalid field")
    message: str = Field(..., description="Validation error message")


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: Optional[str] = Field(None, description="Application-specific error code, e.g. CAPACITY_EXCEEDED")
    retryable: Optional[bool] = Field(None, description="Whether repeating the request may succeed")
    conflicting_resource: Optional[Dict[str, Any]] = Field(None, description="State that caused a 409")
    booking_entry_id: Optional[int] = Field(None, description="Ledger entry recorded for a rejected request")
    error_id: Optional[str] = Field(None, description="Correlation id for unexpected errors")
    violations: Optional[List[Violation]] = Field(None, description="Validation errors")

    class Config:
        extra = "allow"
