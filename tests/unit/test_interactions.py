"""Unit tests for pending interaction de-duplication."""

import asyncio

import pytest

from termlink.connection import PendingInteractions


@pytest.mark.asyncio
async def test_second_start_attaches_to_pending_future() -> None:
    interactions = PendingInteractions()
    gate = asyncio.Event()
    calls = []

    async def prompt():
        calls.append(1)
        await gate.wait()
        return "answer"

    first, created_first = interactions.start(("trust", 1), prompt)
    second, created_second = interactions.start(("trust", 1), prompt)

    assert first is second
    assert created_first and not created_second
    assert interactions.is_pending(("trust", 1))

    gate.set()
    assert await first == "answer"
    await asyncio.sleep(0)

    assert calls == [1]
    assert not interactions.is_pending(("trust", 1))
    assert interactions.count() == 0


@pytest.mark.asyncio
async def test_keys_are_independent() -> None:
    interactions = PendingInteractions()

    async def prompt():
        return True

    a, _ = interactions.start(("trust", 1), prompt)
    b, _ = interactions.start(("trust", 2), prompt)
    c, _ = interactions.start(("password", 1), prompt)

    assert len({id(a), id(b), id(c)}) == 3
    assert interactions.count() == 3
    await asyncio.gather(a, b, c)


@pytest.mark.asyncio
async def test_failed_interaction_releases_key() -> None:
    interactions = PendingInteractions()

    async def broken():
        raise RuntimeError("dialog crashed")

    future, _ = interactions.start(("password", 1), broken)

    with pytest.raises(RuntimeError, match="dialog crashed"):
        await future
    await asyncio.sleep(0)

    assert not interactions.is_pending(("password", 1))

    again, created = interactions.start(("password", 1), broken)
    assert created
    with pytest.raises(RuntimeError):
        await again
