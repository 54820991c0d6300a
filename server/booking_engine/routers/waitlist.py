"""Waitlist router for reading a pool's queue."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.exceptions import InternalServerError, ProblemDetailsException
from ..schemas.common import Problem
from ..schemas.offer import ClaimOffer
from ..schemas.waitlist import GetWaitlistRequest, Waitlist
from ..services.offer_service import OfferService
from ..services.pool_service import PoolService
from ..services.waitlist_service import WaitlistService
from .booking import _convert_entry_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/waitlist", tags=["waitlist"])

DB_DEPENDENCY = Depends(get_db)


@router.post("/get", response_model=Waitlist, responses={404: {"model": Problem}})
async def get_waitlist(
    request: GetWaitlistRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Get a pool's waitlist in FIFO order.

    Positions are 1-based. The open offer, when there is one, belongs to
    the entry at position 1.
    """
    pool_service = PoolService(db)
    waitlist_service = WaitlistService(db)
    offer_service = OfferService(db)

    try:
        pool = await pool_service.get_pool_by_id_or_raise(request.pool_id)
        queue = await waitlist_service.get_queue(pool.id)
        open_offer = await offer_service.get_open_offer(pool.id)

        response_data = Waitlist(
            pool_id=pool.id,
            entries=[
                _convert_entry_to_schema(entry, position)
                for position, entry in enumerate(queue, start=1)
            ],
            open_offer=ClaimOffer.model_validate(open_offer) if open_offer else None,
        )

        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in waitlist retrieval",
            extra={"pool_id": request.pool_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()
