"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    @property
    def code(self) -> Optional[str]:
        """Application-specific error code, when the problem carries one."""
        return self.problem_details.get("code")


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not error_id:
            error_id = str(uuid.uuid4())

        extensions = {
            "error_id": error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri="https://example.com/problems/internal-server-error",
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class PoolValidationError(ValidationError):
    """Exception when a pool definition is inconsistent (bad parent, bad kind)."""

    def __init__(self, detail: str, field: str):
        super().__init__(detail=detail, errors={field: detail})


class CapacityExceededError(ConflictError):
    """Exception when a pool is full and cannot take the request."""

    def __init__(
        self,
        pool_id: int,
        capacity: int,
        occupancy: int,
        booking_entry_id: Optional[int] = None,
    ):
        super().__init__(
            detail=f"Pool {pool_id} is full ({occupancy}/{capacity}) and does not accept a waitlist",
            conflicting_resource={
                "pool_id": pool_id,
                "capacity": capacity,
                "occupancy": occupancy,
            }
        )
        self.problem_details.update({
            "code": "CAPACITY_EXCEEDED",
            "retryable": False
        })
        if booking_entry_id is not None:
            self.problem_details["booking_entry_id"] = booking_entry_id


class DuplicateBookingError(ConflictError):
    """Exception when a subject already holds an active entry on the pool."""

    def __init__(self, pool_id: int, subject_id: str, existing_entry_id: int, existing_status: str):
        super().__init__(
            detail=f"Subject {subject_id} already has an active booking on pool {pool_id}",
            conflicting_resource={
                "pool_id": pool_id,
                "booking_entry_id": existing_entry_id,
                "status": existing_status,
            }
        )
        self.problem_details.update({
            "code": "DUPLICATE_BOOKING",
            "retryable": False
        })


class InvalidCapacityError(ConflictError):
    """Exception when a resize would drop capacity below what is in use."""

    def __init__(self, pool_id: int, requested_capacity: int, occupancy: int):
        super().__init__(
            detail=f"Cannot resize pool {pool_id} to {requested_capacity}; "
                   f"{occupancy} confirmed bookings hold spots and capacity must stay positive",
            conflicting_resource={
                "pool_id": pool_id,
                "requested_capacity": requested_capacity,
                "occupancy": occupancy,
            }
        )
        self.problem_details.update({
            "code": "INVALID_CAPACITY",
            "retryable": False
        })


class InvalidTransitionError(ConflictError):
    """Exception when a booking entry cannot move to the requested status."""

    def __init__(self, booking_entry_id: int, current_status: str, target_status: str):
        super().__init__(
            detail=f"Booking entry {booking_entry_id} cannot move from {current_status} to {target_status}"
        )
        self.problem_details.update({
            "code": "INVALID_TRANSITION",
            "retryable": False,
            "booking_entry_id": booking_entry_id,
            "current_status": current_status,
            "target_status": target_status,
        })


class OfferExpiredError(ProblemDetailsException):
    """Exception when a claim arrives after the offer window has lapsed."""

    def __init__(self, offer_id: int, expired_at: datetime):
        super().__init__(
            status_code=410,
            title="Offer Expired",
            detail=f"Claim offer {offer_id} expired at {expired_at.isoformat()}",
            type_uri="https://example.com/problems/offer-expired",
            extensions={
                "code": "OFFER_EXPIRED",
                "retryable": False,
                "offer_id": offer_id,
                "expired_at": expired_at.isoformat(),
            },
        )


class OfferAlreadyResolvedError(ConflictError):
    """Exception when a claim targets an offer that is no longer open."""

    def __init__(self, offer_id: int, status: str):
        super().__init__(
            detail=f"Claim offer {offer_id} was already resolved (status: {status})"
        )
        self.problem_details.update({
            "code": "OFFER_ALREADY_RESOLVED",
            "retryable": False,
            "offer_id": offer_id,
            "offer_status": status,
        })


class OccupancyInvariantError(InternalServerError):
    """Exception when a pool's occupancy no longer matches its confirmed entries."""

    def __init__(self, pool_id: int, occupancy: int, confirmed_count: int):
        super().__init__(
            detail=f"Pool {pool_id} records occupancy {occupancy} but holds "
                   f"{confirmed_count} confirmed bookings; the operation was rolled back"
        )
        self.problem_details.update({
            "code": "OCCUPANCY_INVARIANT_VIOLATED",
            "retryable": False,
            "pool_id": pool_id,
            "occupancy": occupancy,
            "confirmed_count": confirmed_count,
        })


class TransientConflictError(ProblemDetailsException):
    """Exception when concurrent writers kept colliding after bounded retries."""

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            status_code=503,
            title="Transient Conflict",
            detail=f"{operation} could not complete after {attempts} attempts due to concurrent updates",
            type_uri="https://example.com/problems/transient-conflict",
            extensions={
                "code": "TRANSIENT_CONFLICT",
                "retryable": True,
                "operation": operation,
                "attempts": attempts,
            },
            headers={"Retry-After": "1"},
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error = InternalServerError(instance=str(request.url))
    return JSONResponse(
        status_code=500,
        content=error.problem_details,
        media_type="application/problem+json",
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Exception handler for request body validation failures.

    Reports each failed field as a violation with a dotted path.
    """
    violations = [
        {
            "path": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    content = {
        "type": "https://example.com/problems/validation-error",
        "title": "Validation Error",
        "status": 422,
        "detail": "The request body failed validation",
        "instance": str(request.url),
        "violations": violations,
    }
    return JSONResponse(status_code=422, content=content, media_type="application/problem+json")
