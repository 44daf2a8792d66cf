# tests/fixtures/__init__.py
"""
Test fixtures for the content tiers.

Factory functions and fakes:
- make_item() / make_event()
- FakeClock: manual monotonic clock for cache expiry
- FakeRemote: in-memory stand-in for RemoteContentSource
- make_resolver(): resolver wired to tmp-path files and a FakeRemote
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.models.content import ContentItem
from services.content_cache import CacheStore
from services.content_errors import ContentNotFoundError, RemoteSourceError
from services.content_mapper import item_to_record
from services.content_resolver import ContentResolver, Timeouts
from services.content_tiers import Hit, Miss, TierResult
from services.local_store import LocalContentStore
from services.remote_content_service import ContentQuery
from services.snapshot_store import SnapshotStore

FIXED_NOW = datetime(2025, 8, 10, 12, 0, tzinfo=timezone.utc)


def make_item(id: str = "article-1", **overrides: Any) -> ContentItem:
    base: Dict[str, Any] = {
        "id": id,
        "title": f"Title {id}",
        "excerpt": "Short excerpt",
        "content": "Body",
        "category": "General",
        "type": "article",
        "status": "published",
        "created_at": "2025-08-01T10:00:00+00:00",
    }
    base.update(overrides)
    return ContentItem.model_validate(base)


def make_event(id: str = "event-1", **overrides: Any) -> ContentItem:
    overrides.setdefault("type", "event")
    overrides.setdefault("event_date", "2025-09-01T18:00:00+00:00")
    return make_item(id, **overrides)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """
    Answers like ``RemoteContentSource``; filters only on ``type`` so tests
    can check that the resolver re-applies its own predicates.
    """

    def __init__(
        self,
        items: Optional[List[ContentItem]] = None,
        *,
        fail: bool = False,
        fail_mutations: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.items: List[ContentItem] = list(items or [])
        self.fail = fail
        self.fail_mutations = fail_mutations
        self.delay = delay
        self.collection_calls: List[ContentQuery] = []
        self.item_calls: List[str] = []
        self._seq = 0

    async def _wait(self, timeout: float) -> bool:
        if not self.delay:
            return True
        try:
            await asyncio.wait_for(asyncio.sleep(self.delay), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def fetch_collection(self, query: ContentQuery, *, timeout: float) -> TierResult:
        self.collection_calls.append(query)
        # Rows are read as of query start, like a database snapshot.
        items = list(self.items)
        if not await self._wait(timeout):
            return Miss(tier="remote", reason="timeout")
        if self.fail:
            return Miss(tier="remote", reason="error")
        if query.filter.type:
            items = [i for i in items if (i.type or "").lower() == query.filter.type]
        return Hit(tier="remote", items=items)

    async def fetch_raw_collection(self, query=None, *, timeout=None) -> List[Dict[str, Any]]:
        if self.fail:
            raise RemoteSourceError("remote down")
        return [item_to_record(i) for i in self.items]

    async def fetch_by_id(self, content_id: str, *, timeout: float) -> TierResult:
        self.item_calls.append(content_id)
        if self.fail:
            return Miss(tier="remote", reason="error")
        for item in self.items:
            if item.id == content_id:
                return Hit(tier="remote", items=[item])
        return Miss(tier="remote", reason="not_found")

    def new_id(self, content_type: Optional[str]) -> str:
        self._seq += 1
        prefix = "event" if content_type == "event" else "article"
        return f"{prefix}-{self._seq}"

    async def create(self, data: Dict[str, Any]) -> ContentItem:
        if self.fail_mutations:
            raise RemoteSourceError("insert failed")
        item = make_item(self.new_id(data.get("type")), **data)
        self.items.insert(0, item)
        return item

    async def update(self, content_id: str, data: Dict[str, Any]) -> ContentItem:
        if self.fail_mutations:
            raise RemoteSourceError("update failed")
        for index, item in enumerate(self.items):
            if item.id == content_id:
                updated = item.model_copy(update=data)
                self.items[index] = updated
                return updated
        raise ContentNotFoundError(content_id)

    async def delete(self, content_id: str) -> bool:
        if self.fail_mutations:
            raise RemoteSourceError("delete failed")
        before = len(self.items)
        self.items = [i for i in self.items if i.id != content_id]
        return len(self.items) != before


def make_resolver(
    tmp_path: Path,
    remote: Any,
    *,
    clock: Optional[FakeClock] = None,
    ttl: float = 600,
    timeouts: Optional[Timeouts] = None,
    now: datetime = FIXED_NOW,
) -> ContentResolver:
    return ContentResolver(
        remote=remote,
        snapshot=SnapshotStore(tmp_path / "optimized-fallback.json", warn_kb=500),
        local=LocalContentStore(tmp_path / "articles.json"),
        cache=CacheStore(ttl, clock=clock or FakeClock()),
        timeouts=timeouts or Timeouts(homepage=1.0, collection=1.0, item=1.0),
        now=lambda: now,
    )
