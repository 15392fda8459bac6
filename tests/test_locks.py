"""Test the per-key lock table."""
import asyncio

import pytest

from core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLock()
    events = []

    async def worker(name):
        async with locks.hold("book-1"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert events in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def first():
        async with locks.hold("book-1"):
            await asyncio.wait_for(inside.wait(), timeout=1)

    async def second():
        async with locks.hold("book-2"):
            inside.set()

    await asyncio.gather(first(), second())


@pytest.mark.asyncio
async def test_entries_are_released():
    locks = KeyedLock()
    async with locks.hold("book-1"):
        assert locks.locked("book-1")
        assert locks.active_keys == 1
    assert not locks.locked("book-1")
    assert locks.active_keys == 0


@pytest.mark.asyncio
async def test_entry_released_after_error():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("book-1"):
            raise RuntimeError("boom")
    assert locks.active_keys == 0
