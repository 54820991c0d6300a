"""Unit tests for booking service: reserve, cancel and lookups."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from booking_engine.core.exceptions import (
    CapacityExceededError,
    DuplicateBookingError,
    InvalidTransitionError,
    NotFoundError,
    OccupancyInvariantError,
)
from booking_engine.models.booking_entry import BookingEntry, BookingStatus
from booking_engine.models.claim_offer import OfferStatus
from booking_engine.models.pool import ResourcePool
from booking_engine.schemas.pool import CreatePoolRequest, PoolKind
from booking_engine.services.booking_service import BookingService
from booking_engine.services.offer_service import OfferService
from booking_engine.services.pool_service import PoolService
from conftest import OFFER_WINDOW, T0


async def _create_pool(session, capacity=2, accepts_waitlist=True, ref="camp-1"):
    return await PoolService(session).create_pool(
        CreatePoolRequest(
            kind=PoolKind.CAMP,
            external_ref=ref,
            capacity=capacity,
            accepts_waitlist=accepts_waitlist,
        )
    )


@pytest.fixture
def booking_service(test_session, notifier):
    return BookingService(test_session, notifier, offer_window=OFFER_WINDOW)


@pytest.fixture
def offer_service(test_session, notifier):
    return OfferService(test_session, notifier, offer_window=OFFER_WINDOW)


@pytest.mark.asyncio
async def test_reserve_confirms_when_spot_free(test_session, booking_service, notifier):
    pool = await _create_pool(test_session, capacity=2)

    entry = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)

    assert entry.status == BookingStatus.CONFIRMED
    assert entry.subject_id == "kid-a"
    assert entry.requester_id == "parent-a"
    assert pool.occupancy == 1
    assert notifier.kinds() == ["booking_confirmed"]


@pytest.mark.asyncio
async def test_reserve_waitlists_when_full(test_session, booking_service, notifier):
    """Requests beyond capacity join the waitlist in arrival order."""
    pool = await _create_pool(test_session, capacity=1)

    first = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    second = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0 + timedelta(seconds=1))
    third = await booking_service.reserve(pool.id, "kid-c", "parent-c", now=T0 + timedelta(seconds=2))

    assert first.status == BookingStatus.CONFIRMED
    assert second.status == BookingStatus.WAITLISTED
    assert third.status == BookingStatus.WAITLISTED
    assert await booking_service.get_queue_position(second) == 1
    assert await booking_service.get_queue_position(third) == 2
    assert await booking_service.get_queue_position(first) is None
    assert notifier.kinds() == ["booking_confirmed", "booking_waitlisted", "booking_waitlisted"]
    assert notifier.events[1].waitlist_notice == "added"


@pytest.mark.asyncio
async def test_reserve_rejected_without_waitlist(test_session, booking_service):
    """A full pool that takes no waitlist records a rejection and says so."""
    pool = await _create_pool(test_session, capacity=1, accepts_waitlist=False)
    await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)

    with pytest.raises(CapacityExceededError) as exc_info:
        await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)

    problem = exc_info.value.problem_details
    assert problem["code"] == "CAPACITY_EXCEEDED"
    rejected = await booking_service.get_entry_by_id(problem["booking_entry_id"])
    assert rejected.status == BookingStatus.REJECTED
    assert pool.occupancy == 1


@pytest.mark.asyncio
async def test_rejected_subject_can_try_again(test_session, booking_service):
    pool = await _create_pool(test_session, capacity=1, accepts_waitlist=False)
    first = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    with pytest.raises(CapacityExceededError):
        await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)

    await booking_service.cancel(first.id, now=T0)
    retry = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)

    assert retry.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_reserve_duplicate_subject(test_session, booking_service):
    """A subject holds at most one active entry per pool."""
    pool = await _create_pool(test_session, capacity=1)
    confirmed = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    waitlisted = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    pool_id, confirmed_id = pool.id, confirmed.id

    with pytest.raises(DuplicateBookingError) as exc_info:
        await booking_service.reserve(pool_id, "kid-a", "parent-a", now=T0)
    assert exc_info.value.problem_details["conflicting_resource"]["booking_entry_id"] == confirmed_id

    with pytest.raises(DuplicateBookingError):
        await booking_service.reserve(pool_id, "kid-b", "other-parent", now=T0)

    # The failed attempts rolled back, so reload before inspecting
    await test_session.refresh(pool)
    await test_session.refresh(waitlisted)
    assert pool.occupancy == 1
    assert len(await booking_service.list_entries(pool_id=pool_id)) == 2
    assert waitlisted.status == BookingStatus.WAITLISTED


@pytest.mark.asyncio
async def test_same_subject_in_different_pools(test_session, booking_service):
    first_pool = await _create_pool(test_session, ref="camp-1")
    second_pool = await _create_pool(test_session, ref="camp-2")

    a = await booking_service.reserve(first_pool.id, "kid-a", "parent-a", now=T0)
    b = await booking_service.reserve(second_pool.id, "kid-a", "parent-a", now=T0)

    assert a.status == BookingStatus.CONFIRMED
    assert b.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_reserve_unknown_pool(booking_service):
    with pytest.raises(NotFoundError):
        await booking_service.reserve(999, "kid-a", "parent-a", now=T0)


@pytest.mark.asyncio
async def test_latecomer_does_not_jump_queue(test_session, booking_service, offer_service):
    """While a spot is on offer, new requests queue behind the offer holder."""
    pool = await _create_pool(test_session, capacity=1)
    first = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    waiting = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)

    await booking_service.cancel(first.id, now=T0 + timedelta(minutes=1))
    late = await booking_service.reserve(pool.id, "kid-c", "parent-c", now=T0 + timedelta(minutes=2))

    assert pool.occupancy == 0
    assert late.status == BookingStatus.WAITLISTED
    offer = await offer_service.get_open_offer(pool.id)
    assert offer.booking_entry_id == waiting.id


@pytest.mark.asyncio
async def test_cancel_confirmed_promotes_head(test_session, booking_service, offer_service, notifier):
    pool = await _create_pool(test_session, capacity=1)
    first = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    second = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    notifier.clear()

    cancelled = await booking_service.cancel(first.id, reason="Family trip", now=T0 + timedelta(hours=1))

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancel_reason == "Family trip"
    assert pool.occupancy == 0

    offer = await offer_service.get_open_offer(pool.id)
    assert offer.booking_entry_id == second.id
    assert offer.expires_at == T0 + timedelta(hours=1) + OFFER_WINDOW
    assert notifier.kinds() == ["booking_cancelled", "spot_offered"]
    assert notifier.events[1].offer_id == offer.id
    assert notifier.events[1].waitlist_notice == "spot_available"

    # The head is still waitlisted until it claims
    head = await booking_service.get_entry_by_id(second.id)
    assert head.status == BookingStatus.WAITLISTED


@pytest.mark.asyncio
async def test_cancel_confirmed_without_waitlist_frees_spot(test_session, booking_service, offer_service):
    pool = await _create_pool(test_session, capacity=1)
    first = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)

    await booking_service.cancel(first.id, now=T0)

    assert pool.occupancy == 0
    assert await offer_service.get_open_offer(pool.id) is None
    again = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    assert again.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_cancel_waitlisted_leaves_queue(test_session, booking_service, notifier):
    pool = await _create_pool(test_session, capacity=1)
    await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    second = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    third = await booking_service.reserve(pool.id, "kid-c", "parent-c", now=T0)
    notifier.clear()

    await booking_service.cancel(second.id, now=T0)

    assert pool.occupancy == 1
    assert await booking_service.get_queue_position(third) == 1
    assert notifier.kinds() == ["booking_cancelled"]


@pytest.mark.asyncio
async def test_cancel_offer_holder_passes_offer_on(test_session, booking_service, offer_service, notifier):
    pool = await _create_pool(test_session, capacity=1)
    first = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    second = await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    third = await booking_service.reserve(pool.id, "kid-c", "parent-c", now=T0)
    await booking_service.cancel(first.id, now=T0)
    original_offer = await offer_service.get_open_offer(pool.id)
    notifier.clear()

    await booking_service.cancel(second.id, now=T0 + timedelta(minutes=5))

    withdrawn = await offer_service.get_offer_by_id(original_offer.id)
    assert withdrawn.status == OfferStatus.EXPIRED
    new_offer = await offer_service.get_open_offer(pool.id)
    assert new_offer.booking_entry_id == third.id
    assert notifier.kinds() == ["booking_cancelled", "spot_offered"]


@pytest.mark.asyncio
async def test_cancel_is_idempotent(test_session, booking_service, notifier):
    pool = await _create_pool(test_session, capacity=1)
    entry = await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    await booking_service.cancel(entry.id, now=T0)
    notifier.clear()

    again = await booking_service.cancel(entry.id, now=T0)

    assert again.status == BookingStatus.CANCELLED
    assert pool.occupancy == 0
    assert notifier.events == []


@pytest.mark.asyncio
async def test_cancel_terminal_entry_rejected(test_session, booking_service):
    pool = await _create_pool(test_session, capacity=1, accepts_waitlist=False)
    await booking_service.reserve(pool.id, "kid-a", "parent-a", now=T0)
    with pytest.raises(CapacityExceededError) as exc_info:
        await booking_service.reserve(pool.id, "kid-b", "parent-b", now=T0)
    rejected_id = exc_info.value.problem_details["booking_entry_id"]

    with pytest.raises(InvalidTransitionError):
        await booking_service.cancel(rejected_id, now=T0)


@pytest.mark.asyncio
async def test_cancel_unknown_entry(booking_service):
    with pytest.raises(NotFoundError):
        await booking_service.cancel(4242)


@pytest.mark.asyncio
async def test_cancel_camp_cascades_to_slots(test_session, booking_service):
    """Cancelling a camp registration also releases the subject's slot bookings."""
    pool_service = PoolService(test_session)
    camp = await _create_pool(test_session, capacity=2)
    week_1 = await pool_service.create_pool(
        CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-1", capacity=1, parent_pool_id=camp.id)
    )
    week_2 = await pool_service.create_pool(
        CreatePoolRequest(kind=PoolKind.SLOT, external_ref="week-2", capacity=1, parent_pool_id=camp.id)
    )

    registration = await booking_service.reserve(camp.id, "kid-a", "parent-a", now=T0)
    slot_1 = await booking_service.reserve(week_1.id, "kid-a", "parent-a", now=T0)
    slot_2 = await booking_service.reserve(week_2.id, "kid-a", "parent-a", now=T0)
    other_kid = await booking_service.reserve(week_2.id, "kid-b", "parent-b", now=T0)

    await booking_service.cancel(registration.id, now=T0)

    for entry_id in (slot_1.id, slot_2.id):
        entry = await booking_service.get_entry_by_id(entry_id)
        assert entry.status == BookingStatus.CANCELLED
    untouched = await booking_service.get_entry_by_id(other_kid.id)
    assert untouched.status == BookingStatus.WAITLISTED

    refreshed_week_1 = await pool_service.get_pool_by_id(week_1.id)
    assert refreshed_week_1.occupancy == 0


@pytest.mark.asyncio
async def test_list_entries_by_requester(test_session, booking_service):
    first_pool = await _create_pool(test_session, ref="camp-1")
    second_pool = await _create_pool(test_session, ref="camp-2")
    await booking_service.reserve(first_pool.id, "kid-a", "parent-a", now=T0)
    await booking_service.reserve(second_pool.id, "kid-b", "parent-a", now=T0 + timedelta(seconds=1))
    await booking_service.reserve(second_pool.id, "kid-c", "parent-z", now=T0)

    entries = await booking_service.list_entries(requester_id="parent-a")

    assert [entry.subject_id for entry in entries] == ["kid-a", "kid-b"]

    confirmed = await booking_service.list_entries(pool_id=second_pool.id, status=BookingStatus.CONFIRMED)
    assert len(confirmed) == 2


async def _set_occupancy(session, pool_id, occupancy):
    await session.execute(
        update(ResourcePool).where(ResourcePool.id == pool_id).values(occupancy=occupancy)
    )
    await session.commit()


async def _stored_state(session, pool_id):
    occupancy = (
        await session.execute(select(ResourcePool.occupancy).where(ResourcePool.id == pool_id))
    ).scalar_one()
    entries = (
        await session.execute(
            select(BookingEntry.subject_id, BookingEntry.status)
            .where(BookingEntry.pool_id == pool_id)
            .order_by(BookingEntry.id)
        )
    ).all()
    return occupancy, [tuple(row) for row in entries]


@pytest.mark.asyncio
async def test_reserve_refuses_pool_with_drifted_occupancy(test_session, booking_service, notifier):
    """A reserve on a pool whose occupancy disagrees with its ledger commits nothing."""
    pool = await _create_pool(test_session, capacity=3)
    pool_id = pool.id
    await booking_service.reserve(pool_id, "kid-a", "parent-a", now=T0)
    await _set_occupancy(test_session, pool_id, 0)
    notifier.clear()

    with pytest.raises(OccupancyInvariantError) as exc_info:
        await booking_service.reserve(pool_id, "kid-b", "parent-b", now=T0)

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "OCCUPANCY_INVARIANT_VIOLATED"
    assert exc_info.value.problem_details["confirmed_count"] == 2
    assert await _stored_state(test_session, pool_id) == (0, [("kid-a", "CONFIRMED")])
    assert notifier.events == []


@pytest.mark.asyncio
async def test_cancel_refuses_pool_with_drifted_occupancy(test_session, booking_service):
    pool = await _create_pool(test_session, capacity=2)
    pool_id = pool.id
    entry = await booking_service.reserve(pool_id, "kid-a", "parent-a", now=T0)
    entry_id = entry.id
    await _set_occupancy(test_session, pool_id, 2)

    with pytest.raises(OccupancyInvariantError):
        await booking_service.cancel(entry_id, now=T0)

    assert await _stored_state(test_session, pool_id) == (2, [("kid-a", "CONFIRMED")])
