"""Unit tests for pool service."""

import pytest

from booking_engine.core.exceptions import ConflictError, NotFoundError, PoolValidationError
from booking_engine.models.booking_entry import BookingStatus
from booking_engine.models.claim_offer import OfferStatus
from booking_engine.schemas.pool import CreatePoolRequest, PoolKind
from booking_engine.services.booking_service import BookingService
from booking_engine.services.offer_service import OfferService
from booking_engine.services.pool_service import PoolService
from conftest import OFFER_WINDOW, T0


def _camp_request(ref="camp-1", capacity=2, **overrides):
    return CreatePoolRequest(kind=PoolKind.CAMP, external_ref=ref, capacity=capacity, **overrides)


@pytest.mark.asyncio
async def test_create_pool(test_session):
    """Test creating a camp pool."""
    service = PoolService(test_session)

    pool = await service.create_pool(_camp_request(label="Robotics"))

    assert pool.id is not None
    assert pool.kind == PoolKind.CAMP
    assert pool.capacity == 2
    assert pool.occupancy == 0
    assert pool.accepts_waitlist is True
    assert pool.label == "Robotics"
    assert pool.remaining == 2


@pytest.mark.asyncio
async def test_create_pool_idempotent(test_session):
    """Creating the same pool twice returns the existing one."""
    service = PoolService(test_session)

    first = await service.create_pool(_camp_request())
    second = await service.create_pool(_camp_request())

    assert second.id == first.id


@pytest.mark.asyncio
async def test_create_pool_conflicting_settings(test_session):
    """Reusing a reference with different settings is a conflict."""
    service = PoolService(test_session)
    await service.create_pool(_camp_request(capacity=2))

    with pytest.raises(ConflictError):
        await service.create_pool(_camp_request(capacity=5))


@pytest.mark.asyncio
async def test_same_ref_allowed_for_different_kinds(test_session):
    service = PoolService(test_session)

    camp = await service.create_pool(_camp_request(ref="shared"))
    slot = await service.create_pool(
        CreatePoolRequest(kind=PoolKind.SLOT, external_ref="shared", capacity=1)
    )

    assert camp.id != slot.id


@pytest.mark.asyncio
async def test_create_slot_under_camp(test_session):
    service = PoolService(test_session)
    camp = await service.create_pool(_camp_request())

    slot = await service.create_pool(
        CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-1", capacity=1, parent_pool_id=camp.id)
    )

    assert slot.parent_pool_id == camp.id
    assert await service.get_child_pool_ids(camp.id) == [slot.id]


@pytest.mark.asyncio
async def test_parent_must_be_camp(test_session):
    """Only slot pools may have a parent, and the parent must be a camp."""
    service = PoolService(test_session)
    camp = await service.create_pool(_camp_request())
    slot = await service.create_pool(
        CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-1", capacity=1, parent_pool_id=camp.id)
    )

    with pytest.raises(PoolValidationError):
        await service.create_pool(_camp_request(ref="camp-2", parent_pool_id=camp.id))

    with pytest.raises(PoolValidationError):
        await service.create_pool(
            CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-2", capacity=1, parent_pool_id=slot.id)
        )

    with pytest.raises(PoolValidationError):
        await service.create_pool(
            CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-3", capacity=1, parent_pool_id=9999)
        )


@pytest.mark.asyncio
async def test_get_pool_by_ref(test_session):
    service = PoolService(test_session)
    created = await service.create_pool(_camp_request(ref="camp-by-ref"))

    found = await service.get_pool_by_ref(PoolKind.CAMP, "camp-by-ref")
    missing = await service.get_pool_by_ref(PoolKind.SLOT, "camp-by-ref")

    assert found.id == created.id
    assert missing is None


@pytest.mark.asyncio
async def test_get_pool_not_found(test_session):
    service = PoolService(test_session)

    assert await service.get_pool_by_id(12345) is None
    with pytest.raises(NotFoundError):
        await service.get_pool_by_id_or_raise(12345)


@pytest.mark.asyncio
async def test_delete_pool_cancels_everything(test_session, notifier):
    """Deleting a pool cancels confirmed and waitlisted entries and expires the offer."""
    pool_service = PoolService(test_session, notifier)
    booking_service = BookingService(test_session, notifier, offer_window=OFFER_WINDOW)
    offer_service = OfferService(test_session, notifier, offer_window=OFFER_WINDOW)
    pool = await pool_service.create_pool(_camp_request(capacity=1))

    confirmed = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    await booking_service.reserve(pool.id, "kid-c", "parent-c", now=T0)
    await booking_service.cancel(confirmed.id, now=T0)
    offer = await offer_service.get_open_offer(pool.id)
    assert offer is not None
    notifier.clear()

    deleted = await pool_service.delete_pool(pool.id, reason="Camp called off")

    assert deleted.is_deleted is True
    assert deleted.occupancy == 0
    entries = await booking_service.list_entries(pool_id=pool.id)
    assert {entry.status for entry in entries} == {BookingStatus.CANCELLED}
    assert all(
        entry.cancel_reason == "Camp called off"
        for entry in entries if entry.id != confirmed.id
    )
    refreshed_offer = await offer_service.get_offer_by_id(offer.id)
    assert refreshed_offer.status == OfferStatus.EXPIRED
    assert notifier.kinds() == ["booking_cancelled", "booking_cancelled"]

    with pytest.raises(NotFoundError):
        await pool_service.get_pool_by_id_or_raise(pool.id)
    with pytest.raises(NotFoundError):
        await booking_service.reserve(pool.id, "kid-d", "parent-d", now=T0)


@pytest.mark.asyncio
async def test_delete_camp_cascades_to_slots(test_session, notifier):
    pool_service = PoolService(test_session, notifier)
    booking_service = BookingService(test_session, notifier)
    camp = await pool_service.create_pool(_camp_request())
    slot = await pool_service.create_pool(
        CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-1", capacity=1, parent_pool_id=camp.id)
    )
    slot_entry = await booking_service.reserve(slot.id, "kid-a", "parent-a")

    await pool_service.delete_pool(camp.id)

    assert await pool_service.get_pool_by_id(slot.id) is None
    slot_after = await pool_service.get_pool_by_id(slot.id, include_deleted=True)
    assert slot_after.is_deleted is True
    assert slot_after.occupancy == 0
    entry = await booking_service.get_entry_by_id(slot_entry.id)
    assert entry.status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_deleted_ref_cannot_be_recreated(test_session):
    service = PoolService(test_session)
    pool = await service.create_pool(_camp_request())
    await service.delete_pool(pool.id)

    with pytest.raises(ConflictError):
        await service.create_pool(_camp_request())
