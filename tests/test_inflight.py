from __future__ import annotations

import asyncio
import gc

import pytest

from marginalia.services.inflight import InflightRegistry


@pytest.mark.asyncio
async def test_failure_is_shared_and_entry_is_cleared():
    registry: InflightRegistry[str] = InflightRegistry()
    release = asyncio.Event()
    calls = 0

    async def failing():
        nonlocal calls
        calls += 1
        await release.wait()
        raise RuntimeError("boom")

    first = asyncio.create_task(registry.run("note-1", failing))
    second = asyncio.create_task(registry.run("note-1", failing))
    await asyncio.sleep(0.01)
    assert registry.running("note-1")
    release.set()

    results = await asyncio.gather(first, second, return_exceptions=True)

    assert calls == 1
    assert all(isinstance(r, RuntimeError) for r in results)
    assert not registry.running("note-1")
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_sequential_runs_do_not_join():
    registry: InflightRegistry[int] = InflightRegistry()
    counter = iter(range(10))

    async def compute():
        return next(counter)

    assert await registry.run("k", compute) == 0
    assert await registry.run("k", compute) == 1


@pytest.mark.asyncio
async def test_failure_after_every_caller_left_is_not_reported_as_lost():
    registry: InflightRegistry[str] = InflightRegistry()
    release = asyncio.Event()
    loop = asyncio.get_running_loop()
    reported: list[dict] = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))

    async def failing():
        await release.wait()
        raise RuntimeError("boom")

    try:
        caller = asyncio.create_task(registry.run("note-1", failing))
        await asyncio.sleep(0.01)
        caller.cancel()
        release.set()
        await asyncio.sleep(0.01)
        gc.collect()
    finally:
        loop.set_exception_handler(previous_handler)

    assert caller.cancelled()
    assert len(registry) == 0
    assert not [c for c in reported if "never retrieved" in c.get("message", "")]
