"""Per-note coalescing of concurrent elaboration runs."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class InflightRegistry(Generic[T]):
    """Maps a key to the task currently computing its result.

    Callers that join a running task await it through ``asyncio.shield`` so
    that a disconnecting client does not cancel the run for everyone else.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[T]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def run(self, key: str, factory: Callable[[], Awaitable[T]], *, force: bool = False) -> T:
        existing = self._tasks.get(key)
        if existing is not None and not existing.done() and not force:
            logger.debug(f"Joining in-flight run for {key}")
            return await asyncio.shield(existing)

        task: asyncio.Task[T] = asyncio.ensure_future(factory())
        self._tasks[key] = task

        def _forget(done: asyncio.Task[T]) -> None:
            if self._tasks.get(key) is done:
                del self._tasks[key]
            # Every caller may have been cancelled; read the error so it is not reported as lost.
            if not done.cancelled() and done.exception() is not None:
                logger.debug(f"In-flight run for {key} failed: {done.exception()!r}")

        task.add_done_callback(_forget)
        return await asyncio.shield(task)
