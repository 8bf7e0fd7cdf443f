"""Tests for in-flight request coalescing."""
import asyncio

import pytest

from brickcache.fetch.single_flight import SingleFlight


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_call():
    """Only the first caller runs the work."""
    flight = SingleFlight()
    gate = asyncio.Event()
    calls = []

    async def work():
        calls.append(1)
        await gate.wait()
        return "done"

    tasks = [asyncio.create_task(flight.do("k", work)) for _ in range(3)]
    await asyncio.sleep(0)
    assert "k" in flight
    gate.set()

    assert await asyncio.gather(*tasks) == ["done", "done", "done"]
    assert calls == [1]
    assert len(flight) == 0


@pytest.mark.asyncio
async def test_errors_reach_every_caller_and_release_key():
    """A failure is shared, and the next call starts fresh."""
    flight = SingleFlight()
    gate = asyncio.Event()

    async def fail():
        await gate.wait()
        raise ValueError("boom")

    tasks = [asyncio.create_task(flight.do("k", fail)) for _ in range(2)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(result, ValueError) for result in results)

    async def ok():
        return 1

    assert await flight.do("k", ok) == 1


@pytest.mark.asyncio
async def test_distinct_keys_run_independently():
    """Different keys never share work."""
    flight = SingleFlight()

    async def value(v):
        return v

    results = await asyncio.gather(flight.do("a", lambda: value(1)), flight.do("b", lambda: value(2)))
    assert results == [1, 2]
