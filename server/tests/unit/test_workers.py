"""Unit tests for background workers."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.database import utcnow
from booking_engine.models.booking_entry import BookingEntry, BookingStatus
from booking_engine.models.pool import ResourcePool
from booking_engine.schemas.pool import CreatePoolRequest, PoolKind
from booking_engine.services.booking_service import BookingService
from booking_engine.services.offer_service import OfferService
from booking_engine.services.pool_service import PoolService
from booking_engine.workers.base import BaseWorker
from booking_engine.workers.manager import WorkerManager
from booking_engine.workers.occupancy_audit_worker import OccupancyAuditWorker
from booking_engine.workers.offer_expiry_worker import OfferExpiryWorker


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


async def _camp(session, ref="camp-worker", capacity=1):
    return await PoolService(session).create_pool(
        CreatePoolRequest(kind=PoolKind.CAMP, external_ref=ref, capacity=capacity)
    )


class CountingWorker(BaseWorker):
    def __init__(self, fail_first: bool = False):
        super().__init__(name="Counting", interval_seconds=0.01)
        self.fail_first = fail_first
        self.calls = 0

    async def process(self) -> None:
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("first iteration fails")


@pytest.mark.asyncio
async def test_worker_start_and_stop():
    worker = CountingWorker()

    await worker.start()
    assert worker.is_running
    await asyncio.sleep(0.05)
    await worker.stop()

    assert not worker.is_running
    assert worker.iterations >= 1


@pytest.mark.asyncio
async def test_worker_survives_failed_iteration():
    worker = CountingWorker(fail_first=True)

    await worker.start()
    await asyncio.sleep(0.05)
    await worker.stop()

    assert worker.calls >= 2
    assert worker.iterations == worker.calls - 1


@pytest.mark.asyncio
async def test_offer_expiry_worker_sweeps(test_session, session_factory, notifier):
    """Offers made three days ago are well past the default one-day window."""
    past = utcnow() - timedelta(days=3)
    pool = await _camp(test_session)
    booking_service = BookingService(test_session, notifier)
    confirmed = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=past)
    lapsed = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=past)
    head_next = await booking_service.reserve(pool.id, "kid-c", "parent-c", now=past + timedelta(seconds=1))
    await booking_service.cancel(confirmed.id, now=past)
    notifier.clear()

    worker = OfferExpiryWorker(session_factory=session_factory, notifier=notifier)
    await worker.run_once()

    assert worker.expired_total == 1
    assert worker.iterations == 1
    assert (await booking_service.get_entry_by_id(lapsed.id)).status == BookingStatus.EXPIRED
    offer = await OfferService(test_session, notifier).get_open_offer(pool.id)
    assert offer.booking_entry_id == head_next.id
    assert notifier.kinds() == ["offer_expired", "spot_offered"]


@pytest.mark.asyncio
async def test_offer_expiry_worker_idle(session_factory, notifier):
    worker = OfferExpiryWorker(session_factory=session_factory, notifier=notifier)

    await worker.run_once()

    assert worker.expired_total == 0
    assert notifier.events == []


@pytest.mark.asyncio
async def test_occupancy_audit_clean(test_session, session_factory):
    pool = await _camp(test_session, capacity=2)
    booking_service = BookingService(test_session)
    await booking_service.reserve(pool.id, "kid-a", "parent-a")

    worker = OccupancyAuditWorker(session_factory=session_factory)
    await worker.run_once()

    assert worker.last_drifted == []


@pytest.mark.asyncio
async def test_occupancy_audit_reports_drift(test_session, session_factory):
    """Drift is reported but the stored occupancy is left untouched."""
    healthy = await _camp(test_session, ref="camp-healthy", capacity=2)
    drifted = await _camp(test_session, ref="camp-drifted", capacity=2)
    booking_service = BookingService(test_session)
    await booking_service.reserve(healthy.id, "kid-a", "parent-a")
    await booking_service.reserve(drifted.id, "kid-a", "parent-a")

    await test_session.execute(
        update(ResourcePool).where(ResourcePool.id == drifted.id).values(occupancy=2)
    )
    await test_session.commit()

    worker = OccupancyAuditWorker(session_factory=session_factory)
    await worker.run_once()

    assert worker.last_drifted == [drifted.id]
    result = await test_session.execute(
        select(ResourcePool.occupancy).where(ResourcePool.id == drifted.id)
    )
    assert result.scalar_one() == 2
    confirmed = await test_session.execute(
        select(BookingEntry).where(
            BookingEntry.pool_id == drifted.id,
            BookingEntry.status == BookingStatus.CONFIRMED,
        )
    )
    assert len(confirmed.scalars().all()) == 1


def test_worker_manager_status():
    manager = WorkerManager()

    assert set(manager.workers) == {"offer_expiry", "occupancy_audit"}
    assert manager.get_worker_status() == {"offer_expiry": False, "occupancy_audit": False}
    assert isinstance(manager.get_worker("offer_expiry"), OfferExpiryWorker)
