"""Health check router."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.database import utcnow
from ..core.observability import SERVICE_VERSION
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping() -> JSONResponse:
    """Liveness ping in the same RPC style as the rest of the API."""
    response_data = HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=utcnow(),
        version=SERVICE_VERSION
    )

    logger.debug("Health ping", extra={"timestamp": response_data.timestamp.isoformat()})

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
