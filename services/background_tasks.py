"""Detached background work (snapshot rewrites, local resyncs)."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Set

from app.core.logging import get_logger

logger = get_logger().bind(module="background_tasks")


class BackgroundTaskRunner:
    """
    Fire-and-forget tasks with an explicit failure policy: log and drop.

    The runner holds a strong reference to every pending task (the event loop
    only keeps weak ones) and ``drain()`` waits for whatever is still running.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("background_task_spawned", task=name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
