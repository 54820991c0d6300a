"""Unit tests for keyed pool locks."""

import asyncio

import pytest

from booking_engine.core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLock()
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with locks.acquire(1):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))

    assert peak == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLock()
    entered = asyncio.Event()

    async with locks.acquire("pool-a"):
        async def other():
            async with locks.acquire("pool-b"):
                entered.set()

        await asyncio.wait_for(other(), timeout=1)

    assert entered.is_set()


@pytest.mark.asyncio
async def test_int_and_str_keys_are_the_same_lock():
    locks = KeyedLock()

    async with locks.acquire(7):
        assert locks.is_locked("7")
        assert not locks.is_locked(8)

    assert not locks.is_locked(7)


@pytest.mark.asyncio
async def test_acquire_many_holds_every_key():
    locks = KeyedLock()

    async with locks.acquire_many([3, 1, 2, 1]):
        assert all(locks.is_locked(key) for key in (1, 2, 3))
        assert len(locks) == 3

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_overlapping_acquire_many_does_not_deadlock():
    locks = KeyedLock()

    async def take(keys):
        async with locks.acquire_many(keys):
            await asyncio.sleep(0.005)

    await asyncio.wait_for(
        asyncio.gather(take([1, 2]), take([2, 1]), take([2, 3, 1])),
        timeout=2,
    )
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLock()

    with pytest.raises(ValueError):
        async with locks.acquire("pool"):
            raise ValueError("boom")

    assert not locks.is_locked("pool")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_waiting_counts_holder_and_queue():
    locks = KeyedLock()

    async def queued():
        async with locks.acquire("pool"):
            pass

    async with locks.acquire("pool"):
        assert locks.waiting("pool") == 1
        task = asyncio.create_task(queued())
        await asyncio.sleep(0)
        assert locks.waiting("pool") == 2

    await task
    assert locks.waiting("pool") == 0
