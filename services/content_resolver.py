"""
Resolution engine for articles and events.

Every read follows the same policy:

1. in-memory cache for the request key;
2. remote store (deduplicated per key, raced against a timeout); a
   non-empty answer is cached and, if it was the full collection, written
   to the snapshot in the background;
3. snapshot file;
4. raw local store.

The request-specific predicate is applied to whichever tier answered,
because server-side filters are substring matches and may be partial.
Mutations go to the remote store, invalidate the cache before returning and
schedule a snapshot refresh plus a local resync. If the remote store
rejects a mutation it is applied to the local store instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.config import settings
from app.core.logging import get_logger
from app.models.content import (
    FLAG_FIELDS,
    ContentCreate,
    ContentItem,
    ContentUpdate,
    SnapshotStats,
    SyncResult,
)
from services.background_tasks import BackgroundTaskRunner
from services.content_cache import MISS, CacheStore
from services.content_errors import ContentNotFoundError, RemoteSourceError
from services.content_filters import (
    SECTION_KEYWORDS,
    dedupe_by_id,
    event_start,
    is_upcoming,
    matches_category,
    matches_city,
    parse_event_date,
    sort_by_date,
)
from services.content_sync_service import sync_local_store
from services.content_tiers import Hit, Miss, Resolution, Tier, TierResult, resolve_chain
from services.local_store import LocalContentStore
from services.remote_content_service import ContentFilter, ContentQuery, RemoteContentSource
from services.request_dedupe import RequestDeduplicator
from services.slug_service import find_by_slug
from services.snapshot_store import SnapshotStore

logger = get_logger().bind(module="content_resolver")

Predicate = Callable[[ContentItem], bool]

COLLECTION_ALL = "all"
COLLECTION_EVENTS = "events"


@dataclass(frozen=True)
class Timeouts:
    """Remote read budgets in seconds; homepage gets the most, single items the least."""

    homepage: float
    collection: float
    item: float

    @classmethod
    def from_settings(cls) -> "Timeouts":
        return cls(
            homepage=settings.REMOTE_TIMEOUT_HOMEPAGE_SECONDS,
            collection=settings.REMOTE_TIMEOUT_COLLECTION_SECONDS,
            item=settings.REMOTE_TIMEOUT_ITEM_SECONDS,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _apply(items: List[ContentItem], predicate: Optional[Predicate]) -> List[ContentItem]:
    if predicate is None:
        return list(items)
    return [item for item in items if predicate(item)]


class ContentResolver:
    def __init__(
        self,
        *,
        remote: RemoteContentSource,
        snapshot: SnapshotStore,
        local: LocalContentStore,
        cache: CacheStore,
        deduper: Optional[RequestDeduplicator] = None,
        tasks: Optional[BackgroundTaskRunner] = None,
        timeouts: Optional[Timeouts] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.remote = remote
        self.snapshot = snapshot
        self.local = local
        self.cache = cache
        self.deduper = deduper or RequestDeduplicator()
        self.tasks = tasks or BackgroundTaskRunner()
        self.timeouts = timeouts or Timeouts.from_settings()
        self._now = now

    # ------------------------------------------------------------ read policy

    async def _load_remote(
        self,
        key: str,
        query: ContentQuery,
        timeout: float,
        predicate: Optional[Predicate],
    ) -> TierResult:
        generation = self.cache.generation
        result = await self.remote.fetch_collection(query, timeout=timeout)
        if isinstance(result, Miss):
            return result

        items = _apply(result.items, predicate)
        if self.cache.generation != generation:
            # A mutation landed while this read was in flight.
            logger.info("content_stale_read_not_cached", key=key)
            return Hit(tier="remote", items=items)

        if query.is_full_collection and result.items:
            self.tasks.spawn("snapshot_write", self.snapshot.write(result.items))
        if items:
            self.cache.put_collection(key, items)
        return Hit(tier="remote", items=items)

    async def _resolve(
        self,
        key: str,
        query: ContentQuery,
        *,
        timeout: float,
        predicate: Optional[Predicate] = None,
    ) -> Resolution:
        cached = self.cache.get_collection(key)
        if cached is not MISS:
            return Resolution(items=cached, source="cache")

        async def remote_tier() -> TierResult:
            return await self.deduper.dedupe(
                f"collection:{key}",
                lambda: self._load_remote(key, query, timeout, predicate),
            )

        async def snapshot_tier() -> TierResult:
            return Hit(tier="snapshot", items=_apply(await self.snapshot.read(), predicate))

        async def local_tier() -> TierResult:
            return Hit(tier="local", items=_apply(await self.local.read_all(), predicate))

        tiers: List[Tier] = [
            ("remote", remote_tier),
            ("snapshot", snapshot_tier),
            ("local", local_tier),
        ]
        resolution = await resolve_chain(tiers)
        if resolution.source not in ("remote", "cache"):
            logger.warning(
                "content_served_from_fallback",
                key=key,
                source=resolution.source,
                count=len(resolution.items),
                misses=[f"{m.tier}:{m.reason}" for m in resolution.misses],
            )
        return resolution

    # ------------------------------------------------------------ collections

    async def fetch_all(self) -> Resolution:
        return await self._resolve(
            COLLECTION_ALL, ContentQuery(), timeout=self.timeouts.collection
        )

    async def fetch_homepage(self, limit: Optional[int] = None) -> Resolution:
        resolution = await self._resolve(
            COLLECTION_ALL, ContentQuery(), timeout=self.timeouts.homepage
        )
        items = sort_by_date(dedupe_by_id(resolution.items))
        if limit is not None:
            items = items[:limit]
        return Resolution(items=items, source=resolution.source, misses=resolution.misses)

    async def fetch_city_articles(self, city: str) -> Resolution:
        needle = city.strip().lower()
        if not needle:
            return Resolution(items=[], source="none")
        return await self._resolve(
            f"city:{needle}",
            ContentQuery(filter=ContentFilter(city=needle)),
            timeout=self.timeouts.collection,
            predicate=lambda item: not item.is_event and matches_city(item, needle),
        )

    async def fetch_category_articles(self, category: str) -> Resolution:
        needle = category.strip().lower()
        if not needle:
            return Resolution(items=[], source="none")
        # Named sections match several keywords, which the store cannot express
        # as one substring filter; those load the full collection.
        flt = ContentFilter() if needle in SECTION_KEYWORDS else ContentFilter(category=needle)
        return await self._resolve(
            f"category:{needle}",
            ContentQuery(filter=flt),
            timeout=self.timeouts.collection,
            predicate=lambda item: not item.is_event and matches_category(item, needle),
        )

    async def fetch_events(self) -> Resolution:
        return await self._resolve(
            COLLECTION_EVENTS,
            ContentQuery(filter=ContentFilter(type="event")),
            timeout=self.timeouts.collection,
            predicate=lambda item: item.is_event,
        )

    async def fetch_upcoming_events(self, limit: Optional[int] = 10) -> Resolution:
        resolution = await self.fetch_events()
        now = self._now()
        upcoming = [item for item in resolution.items if is_upcoming(item, now)]
        upcoming.sort(key=lambda item: parse_event_date(event_start(item)))
        if limit is not None:
            upcoming = upcoming[:limit]
        return Resolution(items=upcoming, source=resolution.source, misses=resolution.misses)

    async def fetch_flagged(self, flag: str) -> Resolution:
        if flag not in FLAG_FIELDS:
            raise ValueError(f"unknown flag '{flag}'")
        return await self._resolve(
            f"flag:{flag}",
            ContentQuery(filter=ContentFilter(flag=flag)),
            timeout=self.timeouts.collection,
            predicate=lambda item: bool(getattr(item, flag)),
        )

    # ----------------------------------------------------------- single items

    async def _load_remote_item(self, content_id: str) -> TierResult:
        generation = self.cache.generation
        result = await self.remote.fetch_by_id(content_id, timeout=self.timeouts.item)
        if isinstance(result, Hit) and self.cache.generation == generation:
            self.cache.put_item(result.items[0])
        return result

    async def fetch_by_id(self, content_id: str) -> Optional[ContentItem]:
        cached = self.cache.get_item(content_id)
        if cached is not MISS:
            return cached

        result = await self.deduper.dedupe(
            f"item:{content_id}", lambda: self._load_remote_item(content_id)
        )
        if isinstance(result, Hit):
            return result.items[0]
        if result.reason == "not_found":
            return None

        async def snapshot_tier() -> TierResult:
            found = [item for item in await self.snapshot.read() if item.id == content_id]
            return Hit(tier="snapshot", items=found[:1])

        async def local_tier() -> TierResult:
            item = await self.local.read_by_id(content_id)
            return Hit(tier="local", items=[item] if item else [])

        resolution = await resolve_chain([("snapshot", snapshot_tier), ("local", local_tier)])
        logger.info(
            "content_item_from_fallback",
            id=content_id,
            source=resolution.source,
            remote_miss=result.reason,
        )
        return resolution.first

    async def fetch_by_slug(self, slug: str) -> Optional[ContentItem]:
        resolution = await self.fetch_all()
        item = find_by_slug(resolution.items, slug)
        if item is None:
            logger.info("content_slug_not_found", slug=slug, source=resolution.source)
        return item

    async def fetch_event_by_slug(self, slug: str) -> Optional[ContentItem]:
        resolution = await self.fetch_events()
        return find_by_slug(resolution.items, slug)

    # -------------------------------------------------------------- mutations

    def _invalidate(self) -> None:
        self.cache.invalidate_all()
        self.deduper.forget_all()

    def _after_remote_mutation(self, action: str, content_id: str) -> None:
        # Invalidate before returning so this process never reads its own stale data.
        self._invalidate()
        self.tasks.spawn(f"snapshot_refresh:{action}:{content_id}", self._refresh_snapshot_or_raise())
        self.tasks.spawn(f"local_resync:{action}:{content_id}", self.sync_local())

    async def create(self, data: ContentCreate) -> ContentItem:
        payload = data.model_dump(exclude_none=True)
        try:
            item = await self.remote.create(payload)
        except RemoteSourceError as exc:
            logger.warning("content_create_degraded_to_local", error=str(exc))
            item = await self.local.create(payload, content_id=self.remote.new_id(payload.get("type")))
            self._invalidate()
            return item
        self._after_remote_mutation("create", item.id)
        return item

    async def update(self, content_id: str, data: ContentUpdate) -> ContentItem:
        payload = data.model_dump(exclude_unset=True)
        try:
            item = await self.remote.update(content_id, payload)
        except RemoteSourceError as exc:
            logger.warning("content_update_degraded_to_local", id=content_id, error=str(exc))
            item = await self.local.update(content_id, payload)
            self._invalidate()
            return item
        self._after_remote_mutation("update", content_id)
        return item

    async def delete(self, content_id: str) -> bool:
        try:
            deleted = await self.remote.delete(content_id)
        except RemoteSourceError as exc:
            logger.warning("content_delete_degraded_to_local", id=content_id, error=str(exc))
            self._invalidate()
            try:
                await self.local.delete(content_id)
            except ContentNotFoundError:
                return False
            return True
        self._after_remote_mutation("delete", content_id)
        return deleted

    # ---------------------------------------------------------- maintenance

    async def _refresh_snapshot_or_raise(self) -> int:
        result = await self.remote.fetch_collection(ContentQuery(), timeout=self.timeouts.homepage)
        if isinstance(result, Miss):
            raise RemoteSourceError(f"snapshot refresh skipped: remote {result.reason}")
        if not result.items:
            logger.warning("snapshot_refresh_empty_remote")
            return 0
        await self.snapshot.write(result.items)
        return len(result.items)

    async def refresh_snapshot(self) -> SyncResult:
        try:
            count = await self._refresh_snapshot_or_raise()
        except (RemoteSourceError, OSError) as exc:
            logger.error("snapshot_refresh_failed", error=str(exc))
            return SyncResult(success=False, count=0, error=str(exc))
        return SyncResult(success=True, count=count)

    async def sync_local(self) -> SyncResult:
        return await sync_local_store(self.remote, self.local, timeout=self.timeouts.homepage)

    def clear_cache(self) -> None:
        self._invalidate()

    async def snapshot_stats(self) -> SnapshotStats:
        return await self.snapshot.stats()

    async def shutdown(self) -> None:
        await self.tasks.drain()


# ---------------------------------------------------------------- process-wide

_resolver: ContentResolver | None = None


def build_content_resolver() -> ContentResolver:
    return ContentResolver(
        remote=RemoteContentSource(),
        snapshot=SnapshotStore(),
        local=LocalContentStore(),
        cache=CacheStore(settings.cache_ttl_seconds),
    )


def get_content_resolver() -> ContentResolver:
    global _resolver
    if _resolver is None:
        _resolver = build_content_resolver()
        logger.info(
            "content_resolver_ready",
            app_env=settings.APP_ENV,
            cache_ttl_seconds=settings.cache_ttl_seconds,
        )
    return _resolver
