"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from booking_engine import models  # noqa: F401 - register all tables
from booking_engine.core.database import Base, get_db
from booking_engine.services.notifier import BookingEvent, Notifier

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OFFER_WINDOW = timedelta(hours=24)
T0 = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


class RecordingNotifier(Notifier):
    """Notifier that keeps every event it is given."""

    def __init__(self, fail: bool = False):
        self.events: list[BookingEvent] = []
        self.fail = fail

    async def notify(self, event: BookingEvent) -> None:
        if self.fail:
            raise RuntimeError("mail service unavailable")
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [event.kind.value for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def notifier():
    """Notifier that records events for assertions."""
    return RecordingNotifier()


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, notifier):
    """Create a test FastAPI application."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError

    from booking_engine.core.dependencies import get_notifier
    from booking_engine.core.exceptions import (
        ProblemDetailsException,
        generic_exception_handler,
        problem_details_handler,
        request_validation_handler,
    )
    from booking_engine.routers import booking, health, metrics, offer, pool, waitlist

    # Simplified app without lifespan, workers or tracing
    app = FastAPI(title="Camp Booking Engine (Test)", version="1.0.0-test")

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health.router)
    app.include_router(pool.router)
    app.include_router(booking.router)
    app.include_router(waitlist.router)
    app.include_router(offer.router)
    app.include_router(metrics.router)

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_camp_data():
    """Sample camp pool payload."""
    return {
        "kind": "CAMP",
        "external_ref": "camp-robotics-2026",
        "label": "Robotics Camp",
        "capacity": 2,
        "accepts_waitlist": True,
    }
