"""Pool router for pool lifecycle and capacity operations."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import get_actor, get_notifier
from ..core.exceptions import InternalServerError, NotFoundError, ProblemDetailsException, ValidationError
from ..schemas.common import Problem
from ..schemas.pool import (
    CapacityAdjustment,
    CapacityAdjustmentList,
    CreatePoolRequest,
    DeletePoolRequest,
    GetPoolRequest,
    ListAdjustmentsRequest,
    PoolAvailability,
    ResizePoolRequest,
    ResourcePool,
)
from ..services.capacity_service import CapacityService
from ..services.notifier import Notifier
from ..services.pool_service import PoolService
from ..services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/pool", tags=["pool"])

DB_DEPENDENCY = Depends(get_db)
NOTIFIER_DEPENDENCY = Depends(get_notifier)
ACTOR_DEPENDENCY = Depends(get_actor)

ERROR_RESPONSES = {
    400: {"model": Problem},
    404: {"model": Problem},
    409: {"model": Problem},
    503: {"model": Problem},
}


def _convert_pool_to_schema(pool_model, waitlist_length: int = 0) -> ResourcePool:
    """Convert pool model to schema, deriving availability."""
    available = pool_model.occupancy < pool_model.capacity and waitlist_length == 0
    return ResourcePool(
        id=pool_model.id,
        kind=pool_model.kind,
        external_ref=pool_model.external_ref,
        label=pool_model.label,
        parent_pool_id=pool_model.parent_pool_id,
        capacity=pool_model.capacity,
        occupancy=pool_model.occupancy,
        accepts_waitlist=pool_model.accepts_waitlist,
        waitlist_length=waitlist_length,
        status=PoolAvailability.AVAILABLE if available else PoolAvailability.FULL,
        created_at=pool_model.created_at,
    )


async def _pool_response(db: AsyncSession, pool_model) -> JSONResponse:
    waitlist_length = await WaitlistService(db).queue_length(pool_model.id)
    response_data = _convert_pool_to_schema(pool_model, waitlist_length)
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.post("/create", response_model=ResourcePool, responses=ERROR_RESPONSES)
async def create_pool(
    request: CreatePoolRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Create a capacity pool for a camp or a slot.

    This operation is idempotent on kind + external_ref when the settings match.
    """
    pool_service = PoolService(db)

    try:
        pool = await pool_service.create_pool(request)
        return await _pool_response(db, pool)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in pool creation",
            extra={
                "kind": request.kind.value,
                "external_ref": request.external_ref,
                "error": str(e)
            },
            exc_info=True
        )
        raise InternalServerError()


@router.post("/get", response_model=ResourcePool, responses=ERROR_RESPONSES)
async def get_pool(
    request: GetPoolRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Get a pool by id, or by kind and external reference."""
    pool_service = PoolService(db)

    try:
        if request.pool_id is not None:
            pool = await pool_service.get_pool_by_id_or_raise(request.pool_id)
        elif request.kind is not None and request.external_ref:
            pool = await pool_service.get_pool_by_ref(request.kind, request.external_ref)
            if pool is None:
                raise NotFoundError(
                    resource_type="pool",
                    resource_id=f"{request.kind.value}:{request.external_ref}"
                )
        else:
            raise ValidationError(
                detail="Either pool_id or kind and external_ref are required",
                errors={"pool_id": "missing lookup key"},
            )

        return await _pool_response(db, pool)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in pool retrieval",
            extra={"pool_id": request.pool_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()


@router.post("/resize", response_model=ResourcePool, responses=ERROR_RESPONSES)
async def resize_pool(
    request: ResizePoolRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY,
    actor: str = ACTOR_DEPENDENCY
) -> JSONResponse:
    """
    Change a pool's capacity.

    Capacity cannot drop below current occupancy. Growing a pool offers the
    new spot to the head of its waitlist.
    """
    capacity_service = CapacityService(db, notifier)

    try:
        pool = await capacity_service.resize_pool(
            request.pool_id,
            request.new_capacity,
            actor=actor,
            reason=request.reason,
        )
        return await _pool_response(db, pool)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in pool resize",
            extra={
                "pool_id": request.pool_id,
                "new_capacity": request.new_capacity,
                "error": str(e)
            },
            exc_info=True
        )
        raise InternalServerError()


@router.post("/delete", response_model=ResourcePool, responses=ERROR_RESPONSES)
async def delete_pool(
    request: DeletePoolRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: Notifier = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Delete a pool.

    Every confirmed and waitlisted booking on the pool, and on its slot
    pools when it is a camp, is cancelled.
    """
    pool_service = PoolService(db, notifier)

    try:
        pool = await pool_service.delete_pool(request.pool_id, reason=request.reason)
        response_data = _convert_pool_to_schema(pool)
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in pool deletion",
            extra={"pool_id": request.pool_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()


@router.post("/adjustments", response_model=CapacityAdjustmentList, responses=ERROR_RESPONSES)
async def list_adjustments(
    request: ListAdjustmentsRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """List a pool's capacity changes, newest first."""
    capacity_service = CapacityService(db)

    try:
        adjustments = await capacity_service.list_adjustments(request.pool_id)
        response_data = CapacityAdjustmentList(
            items=[CapacityAdjustment.model_validate(adjustment) for adjustment in adjustments]
        )
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error listing capacity adjustments",
            extra={"pool_id": request.pool_id, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError()
