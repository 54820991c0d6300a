"""Offer router for claiming freed spots."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import get_notifier
from ..core.exceptions import InternalServerError, ProblemDetailsException
from ..schemas.common import Problem
from ..schemas.offer import ClaimOffer, ClaimOfferRequest, ClaimResult, GetOfferRequest, SweepResult
from ..services.notifier import Notifier
from ..services.offer_service import OfferService
from .booking import _convert_entry_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/offer", tags=["offer"])

DB_DEPENDENCY = Depends(get_db)
NOTIFIER_DEPENDENCY = Depends(get_notifier)


@router.post(
    "/claim",
    response_model=ClaimResult,
    responses={404: {"model": Problem}, 409: {"model": Problem}, 410: {"model": Problem}},
)
async def claim_offer(
    request: ClaimOfferRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Claim an offered spot before its deadline.

    Answers 410 OFFER_EXPIRED once the window has closed, even if the
    expiry sweep has not run yet.
    """
    offer_service = OfferService(db, notifier)

    try:
        entry = await offer_service.claim(request.offer_id)
        offer = await offer_service.get_offer_by_id_or_raise(request.offer_id)

        response_data = ClaimResult(
            offer=ClaimOffer.model_validate(offer),
            booking=_convert_entry_to_schema(entry),
        )
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in offer claim",
            extra={"offer_id": request.offer_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()


@router.post("/get", response_model=ClaimOffer, responses={404: {"model": Problem}})
async def get_offer(
    request: GetOfferRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Get a claim offer."""
    offer_service = OfferService(db)

    try:
        offer = await offer_service.get_offer_by_id_or_raise(request.offer_id)
        response_data = ClaimOffer.model_validate(offer)
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in offer retrieval",
            extra={"offer_id": request.offer_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()


@router.post("/sweep", response_model=SweepResult)
async def sweep_offers(
    db: AsyncSession = DB_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Expire lapsed offers now (internal operation).

    The expiry worker does this on a timer; this endpoint is for operators
    and tests.
    """
    offer_service = OfferService(db, notifier)

    try:
        expired_count = await offer_service.sweep_expired_offers()
        response_data = SweepResult(expired_count=expired_count)
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in offer sweep",
            extra={"error": str(e)},
            exc_info=True
        )
        raise InternalServerError()
