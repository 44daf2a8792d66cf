"""
In-memory cache for content collections and single items.

One ``CacheStore`` lives per process and is handed to the resolver; the
clock is injectable so expiry can be tested without sleeping.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Sequence, TypeVar, Union

from app.core.logging import get_logger
from app.models.content import ContentItem

logger = get_logger().bind(module="content_cache")

T = TypeVar("T")


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class CacheStore:
    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._collections: Dict[str, _Entry[List[ContentItem]]] = {}
        self._items: Dict[str, _Entry[ContentItem]] = {}
        # Bumped by invalidate_all; a read that started under an older
        # generation must not repopulate the cache.
        self.generation = 0

    def _alive(self, entry: Optional[_Entry]) -> bool:
        return entry is not None and self._clock() < entry.expires_at

    def get_collection(self, key: str) -> Union[List[ContentItem], _Miss]:
        entry = self._collections.get(key)
        if not self._alive(entry):
            self._collections.pop(key, None)
            return MISS
        logger.debug("content_cache_hit", key=key, count=len(entry.value))
        return list(entry.value)

    def put_collection(
        self,
        key: str,
        items: Sequence[ContentItem],
        ttl: Optional[float] = None,
    ) -> None:
        expires_at = self._clock() + (self.ttl_seconds if ttl is None else ttl)
        self._collections[key] = _Entry(list(items), expires_at)
        # Index by id so single-item lookups after a list fetch are O(1).
        for item in items:
            self._items[item.id] = _Entry(item, expires_at)

    def get_item(self, content_id: str) -> Union[ContentItem, _Miss]:
        entry = self._items.get(content_id)
        if not self._alive(entry):
            self._items.pop(content_id, None)
            return MISS
        return entry.value

    def put_item(self, item: ContentItem, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + (self.ttl_seconds if ttl is None else ttl)
        self._items[item.id] = _Entry(item, expires_at)

    def invalidate_all(self) -> None:
        self._collections.clear()
        self._items.clear()
        self.generation += 1
        logger.info("content_cache_invalidated")

    def stats(self) -> Dict[str, object]:
        now = self._clock()
        return {
            "ttl_seconds": self.ttl_seconds,
            "generation": self.generation,
            "collections": sorted(k for k, e in self._collections.items() if now < e.expires_at),
            "items": sum(1 for e in self._items.values() if now < e.expires_at),
        }
