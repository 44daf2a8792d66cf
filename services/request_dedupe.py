"""Collapse concurrent identical requests into one upstream call."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, TypeVar

from app.core.logging import get_logger

logger = get_logger().bind(module="request_dedupe")

T = TypeVar("T")


class RequestDeduplicator:
    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def forget_all(self) -> None:
        """Detach every in-flight call so later callers start a fresh one.

        Current waiters still receive their result.
        """
        if self._inflight:
            logger.debug("request_dedupe_forgotten", keys=sorted(self._inflight))
        self._inflight.clear()

    async def dedupe(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``producer`` once per key at a time; concurrent callers share the result.

        The shared task is shielded so that one waiter being cancelled does not
        cancel the call for everyone else.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(producer())
            self._inflight[key] = task

            def _release(done: asyncio.Task, *, _key: str = key) -> None:
                if self._inflight.get(_key) is done:
                    del self._inflight[_key]
                if not done.cancelled():
                    # Retrieve so an unawaited failure is not reported as "never retrieved".
                    done.exception()

            task.add_done_callback(_release)
        else:
            logger.debug("request_deduped", key=key)
        return await asyncio.shield(task)
