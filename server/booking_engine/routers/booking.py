"""Booking router for reserve, cancel and lookup operations."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import get_notifier
from ..core.exceptions import InternalServerError, ProblemDetailsException
from ..schemas.booking import (
    BookingEntry,
    BookingEntryList,
    CancelBookingRequest,
    GetBookingRequest,
    ListBookingsRequest,
    ReserveRequest,
)
from ..schemas.common import Problem
from ..services.booking_service import BookingService
from ..services.notifier import Notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"])

DB_DEPENDENCY = Depends(get_db)
NOTIFIER_DEPENDENCY = Depends(get_notifier)

ERROR_RESPONSES = {
    404: {"model": Problem},
    409: {"model": Problem},
    503: {"model": Problem},
}


def _convert_entry_to_schema(entry_model, queue_position: Optional[int] = None) -> BookingEntry:
    """Convert booking entry model to schema."""
    return BookingEntry(
        id=entry_model.id,
        pool_id=entry_model.pool_id,
        subject_id=entry_model.subject_id,
        requester_id=entry_model.requester_id,
        status=entry_model.status,
        queue_position=queue_position,
        created_at=entry_model.created_at,
        cancelled_at=entry_model.cancelled_at,
        cancel_reason=entry_model.cancel_reason,
    )


async def _entry_response(booking_service: BookingService, entry_model) -> JSONResponse:
    queue_position = await booking_service.get_queue_position(entry_model)
    response_data = _convert_entry_to_schema(entry_model, queue_position)
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.post("/reserve", response_model=BookingEntry, responses=ERROR_RESPONSES)
async def reserve(
    request: ReserveRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Reserve a spot for a subject.

    Returns the entry as CONFIRMED when a spot is free and nobody is queued,
    otherwise as WAITLISTED with its queue position. Pools that take no
    waitlist answer 409 CAPACITY_EXCEEDED when full.
    """
    booking_service = BookingService(db, notifier)

    try:
        entry = await booking_service.reserve(
            request.pool_id,
            subject_id=request.subject_id,
            requester_id=request.requester_id,
        )
        return await _entry_response(booking_service, entry)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in reservation",
            extra={
                "pool_id": request.pool_id,
                "subject_id": request.subject_id,
                "error": str(e)
            },
            exc_info=True
        )
        raise InternalServerError()


@router.post("/cancel", response_model=BookingEntry, responses=ERROR_RESPONSES)
async def cancel_booking(
    request: CancelBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Cancel a confirmed or waitlisted entry.

    Cancelling an already cancelled entry returns it unchanged.
    """
    booking_service = BookingService(db, notifier)

    try:
        entry = await booking_service.cancel(request.booking_entry_id, reason=request.reason)
        response_data = _convert_entry_to_schema(entry)
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking cancellation",
            extra={"booking_entry_id": request.booking_entry_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()


@router.post("/get", response_model=BookingEntry, responses=ERROR_RESPONSES)
async def get_booking(
    request: GetBookingRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Get a booking entry with its current queue position."""
    booking_service = BookingService(db)

    try:
        entry = await booking_service.get_entry_by_id_or_raise(request.booking_entry_id)
        return await _entry_response(booking_service, entry)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking retrieval",
            extra={"booking_entry_id": request.booking_entry_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()


@router.post("/list", response_model=BookingEntryList, responses=ERROR_RESPONSES)
async def list_bookings(
    request: ListBookingsRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """List a requester's bookings across pools, or every booking on a pool."""
    booking_service = BookingService(db)

    try:
        entries = await booking_service.list_entries(
            requester_id=request.requester_id,
            pool_id=request.pool_id,
            status=request.status,
            limit=request.limit,
        )
        items = [
            _convert_entry_to_schema(entry, await booking_service.get_queue_position(entry))
            for entry in entries
        ]
        response_data = BookingEntryList(items=items)
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error listing bookings",
            extra={
                "requester_id": request.requester_id,
                "pool_id": request.pool_id,
                "error": str(e)
            },
            exc_info=True
        )
        raise InternalServerError()
