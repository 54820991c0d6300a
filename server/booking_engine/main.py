"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import settings
from .core.database import check_db, close_db, engine, get_db, init_db
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    request_validation_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    SERVICE_VERSION,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import booking, health, metrics, offer, pool, waitlist
from .schemas.health import ReadinessResponse
from .workers.manager import worker_manager

setup_structured_logging()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Sets up tracing, creates tables and starts the offer expiry and
    occupancy audit workers; stops them again on shutdown.
    """
    logger.info(
        "Starting booking engine",
        extra={"environment": settings.environment, "debug": settings.debug}
    )

    try:
        setup_tracing(SERVICE_NAME)
        setup_metrics(SERVICE_NAME)
        instrument_sqlalchemy(engine)

        await init_db()
        logger.info("Database initialized successfully")

        if settings.workers_enabled:
            await worker_manager.start_all()
        else:
            logger.info("Background workers disabled by configuration")
    except Exception as e:
        logger.error("Failed to initialize application", extra={"error": str(e)})
        raise

    yield

    logger.info("Shutting down booking engine")

    try:
        await worker_manager.stop_all()
        await close_db()
    except Exception as e:
        logger.error("Error during application cleanup", extra={"error": str(e)})

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Camp Booking Engine",
        description=(
            "RPC-over-HTTP API for capacity-limited camp and slot bookings "
            "with FIFO waitlists and time-boxed claim offers"
        ),
        version=SERVICE_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", "traceparent", "tracestate"],
    )

    setup_middleware(app, enable_logging=True)

    instrument_fastapi(app)

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health Check",
        description="Check if the service process is up",
        response_model=dict,
    )
    async def health_check():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": settings.environment,
            "debug": settings.debug,
        }

    @app.get(
        "/ready",
        tags=["Health"],
        summary="Readiness Check",
        description="Check that the database answers",
        response_model=ReadinessResponse,
        responses={503: {"model": ReadinessResponse}},
    )
    async def readiness_check(db: AsyncSession = Depends(get_db)) -> JSONResponse:
        """Readiness probe; answers 503 while the database is unreachable."""
        try:
            database_ok = await check_db(db)
        except Exception as e:
            logger.warning("Readiness probe failed", extra={"error": str(e)})
            database_ok = False

        checks = {
            "database": "ok" if database_ok else "error",
            "workers": "ok" if not settings.workers_enabled or all(
                worker_manager.get_worker_status().values()
            ) else "stopped",
        }
        response_data = ReadinessResponse(
            status="ready" if database_ok else "not_ready",
            service=SERVICE_NAME,
            checks=checks,
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response_data.model_dump(mode="json")
        )

    @app.get(
        "/info",
        status_code=status.HTTP_200_OK,
        tags=["Info"],
        summary="Service Information",
        description="Get detailed information about the service",
        response_model=dict,
    )
    async def service_info():
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "description": "Capacity-constrained booking engine with waitlist promotion",
            "environment": settings.environment,
            "debug": settings.debug,
            "features": {
                "waitlist": True,
                "claim_offers": True,
                "offer_window_seconds": settings.offer_window_seconds,
                "background_workers": settings.workers_enabled,
                "webhook_notifications": settings.notifier_webhook_url is not None,
                "tracing": settings.otlp_endpoint is not None,
                "problem_details": True,
            },
            "endpoints": {
                "health": "/health",
                "readiness": "/ready",
                "info": "/info",
                "metrics": "/metrics",
                "docs": "/docs" if settings.debug else None,
                "redoc": "/redoc" if settings.debug else None,
            },
        }

    app.include_router(health.router)
    app.include_router(pool.router)
    app.include_router(booking.router)
    app.include_router(waitlist.router)
    app.include_router(offer.router)
    app.include_router(metrics.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "booking_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
