from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from app.models.content import ContentCreate, ContentUpdate
from services.content_errors import ContentNotFoundError, LocalStoreError
from services.content_cache import MISS
from services.content_resolver import Timeouts
from services.remote_content_service import RemoteContentSource
from services.snapshot_store import MAX_TITLE_LENGTH, SnapshotStore
from fixtures import FakeClock, FakeRemote, make_event, make_item, make_resolver

pytestmark = pytest.mark.asyncio


# ------------------------------------------------------------ fallback order


async def test_remote_answer_then_cache_within_ttl(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a"), make_item("b")])
    resolver = make_resolver(tmp_path, remote)

    first = await resolver.fetch_all()
    second = await resolver.fetch_all()

    assert first.source == "remote"
    assert second.source == "cache"
    assert [i.id for i in second.items] == ["a", "b"]
    assert len(remote.collection_calls) == 1
    await resolver.tasks.drain()


async def test_cache_expiry_goes_back_to_remote(tmp_path: Path) -> None:
    clock = FakeClock()
    remote = FakeRemote([make_item("a")])
    resolver = make_resolver(tmp_path, remote, clock=clock, ttl=120)

    await resolver.fetch_all()
    clock.advance(121)
    again = await resolver.fetch_all()

    assert again.source == "remote"
    assert len(remote.collection_calls) == 2
    await resolver.tasks.drain()


async def test_remote_failure_falls_back_to_snapshot(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))
    await resolver.snapshot.write([make_item("x")])
    await resolver.local.replace_all([{"id": "y"}])

    resolution = await resolver.fetch_all()

    assert resolution.source == "snapshot"
    assert [i.id for i in resolution.items] == ["x"]
    assert resolution.misses[0].reason == "error"


async def test_empty_remote_falls_back_to_snapshot(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([]))
    await resolver.snapshot.write([make_item("x")])

    resolution = await resolver.fetch_all()

    assert resolution.source == "snapshot"
    assert [i.id for i in resolution.items] == ["x"]


async def test_missing_snapshot_falls_back_to_local(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))
    await resolver.local.replace_all([{"id": "y", "title": "Local only"}])

    resolution = await resolver.fetch_all()

    assert resolution.source == "local"
    assert [i.id for i in resolution.items] == ["y"]


async def test_undecodable_snapshot_falls_back_to_local(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))
    resolver.snapshot.path.write_bytes(b'[{"id": "x", "title": "\xff\xfe"}]')
    await resolver.local.replace_all([{"id": "y", "title": "Local only"}])

    resolution = await resolver.fetch_all()

    assert resolution.source == "local"
    assert [i.id for i in resolution.items] == ["y"]


async def test_every_tier_empty_returns_empty_list(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))

    resolution = await resolver.fetch_all()

    assert resolution.items == []
    assert resolution.source == "none"


async def test_fallback_answers_are_not_cached(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("live")], fail=True)
    resolver = make_resolver(tmp_path, remote)
    await resolver.snapshot.write([make_item("stale")])

    assert (await resolver.fetch_all()).source == "snapshot"

    remote.fail = False
    recovered = await resolver.fetch_all()

    assert recovered.source == "remote"
    assert [i.id for i in recovered.items] == ["live"]
    await resolver.tasks.drain()


async def test_timeout_falls_back_to_snapshot(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def hanging_fetch(sql: str, *params):
        await asyncio.sleep(5)
        return []

    monkeypatch.setattr("services.remote_content_service.fetch", hanging_fetch)
    resolver = make_resolver(
        tmp_path,
        RemoteContentSource(),
        timeouts=Timeouts(homepage=0.1, collection=0.05, item=0.05),
    )
    await resolver.snapshot.write([make_item("x")])

    resolution = await resolver.fetch_all()

    assert resolution.source == "snapshot"
    assert [i.id for i in resolution.items] == ["x"]
    assert resolution.misses[0].reason == "timeout"


# ---------------------------------------------------- dedupe and snapshot


async def test_concurrent_reads_issue_one_remote_query(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")], delay=0.05)
    resolver = make_resolver(tmp_path, remote)

    results = await asyncio.gather(*(resolver.fetch_all() for _ in range(5)))

    assert len(remote.collection_calls) == 1
    assert all([i.id for i in r.items] == ["a"] for r in results)
    await resolver.tasks.drain()


async def test_full_collection_read_writes_snapshot(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([make_item("a", title="T" * 200)]))

    await resolver.fetch_all()
    await resolver.tasks.drain()

    snapshot = await resolver.snapshot.read()
    assert [i.id for i in snapshot] == ["a"]
    assert snapshot[0].title == "T" * MAX_TITLE_LENGTH + "..."


async def test_filtered_read_does_not_touch_snapshot(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([make_event("e"), make_item("a")]))

    await resolver.fetch_events()
    await resolver.tasks.drain()

    assert not resolver.snapshot.path.exists()


async def test_snapshot_write_failure_does_not_break_reads(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([make_item("a")]))
    # A directory as target makes the atomic rename fail.
    resolver.snapshot = SnapshotStore(tmp_path)

    resolution = await resolver.fetch_all()
    await resolver.tasks.drain()

    assert resolution.source == "remote"
    assert resolver.tasks.failed == 1


# ------------------------------------------------------------------ filters


async def test_city_articles_apply_client_side_predicate(tmp_path: Path) -> None:
    items = [
        make_item("cat", category="Edmonton"),
        make_item("loc", location="Calgary, AB"),
        make_item("tag", tags=["edmonton-eats"]),
        make_event("evt", location="Edmonton"),
    ]
    resolver = make_resolver(tmp_path, FakeRemote(items))

    resolution = await resolver.fetch_city_articles("Edmonton")

    assert [i.id for i in resolution.items] == ["cat", "tag"]
    assert resolution.source == "remote"


async def test_city_predicate_also_applies_to_fallback(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))
    await resolver.snapshot.write([make_item("yeg", category="Edmonton"), make_item("yyc", category="Calgary")])

    resolution = await resolver.fetch_city_articles("calgary")

    assert resolution.source == "snapshot"
    assert [i.id for i in resolution.items] == ["yyc"]


async def test_category_section_keywords(tmp_path: Path) -> None:
    items = [
        make_item("food", category="Restaurants"),
        make_item("art", categories=["Art"]),
        make_event("festival", category="Food"),
    ]
    resolver = make_resolver(tmp_path, FakeRemote(items))

    resolution = await resolver.fetch_category_articles("food-drink")

    assert [i.id for i in resolution.items] == ["food"]
    await resolver.tasks.drain()


async def test_upcoming_events_scenario(tmp_path: Path) -> None:
    items = [
        make_event("past", event_date="2025-08-01"),
        make_event("sept", event_date="2025-09-01"),
        make_event("range", event_date="August 15 - 17, 2025"),
        make_event("tbd", event_date="TBD"),
        make_item("article", created_at="2025-12-01T00:00:00Z"),
    ]
    resolver = make_resolver(tmp_path, FakeRemote(items))

    upcoming = await resolver.fetch_upcoming_events(limit=10)
    capped = await resolver.fetch_upcoming_events(limit=1)

    assert [i.id for i in upcoming.items] == ["range", "sept"]
    assert [i.id for i in capped.items] == ["range"]


async def test_flagged(tmp_path: Path) -> None:
    resolver = make_resolver(
        tmp_path, FakeRemote([make_item("a", trending_home=True), make_item("b")])
    )

    resolution = await resolver.fetch_flagged("trending_home")

    assert [i.id for i in resolution.items] == ["a"]
    with pytest.raises(ValueError):
        await resolver.fetch_flagged("sponsored")


async def test_homepage_is_newest_first_without_duplicates(tmp_path: Path) -> None:
    items = [
        make_item("old", created_at="2024-01-01T00:00:00Z"),
        make_item("new", created_at="2025-07-01T00:00:00Z"),
        make_item("old", created_at="2024-01-01T00:00:00Z"),
    ]
    resolver = make_resolver(tmp_path, FakeRemote(items))

    resolution = await resolver.fetch_homepage(limit=5)

    assert [i.id for i in resolution.items] == ["new", "old"]
    await resolver.tasks.drain()


# ----------------------------------------------------------- single items


async def test_by_id_served_from_collection_cache(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")])
    resolver = make_resolver(tmp_path, remote)
    await resolver.fetch_all()

    item = await resolver.fetch_by_id("a")

    assert item.id == "a"
    assert remote.item_calls == []
    await resolver.tasks.drain()


async def test_by_id_falls_back_when_remote_fails(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))
    await resolver.local.replace_all([{"id": "only-local", "title": "L"}])

    assert (await resolver.fetch_by_id("only-local")).title == "L"
    assert await resolver.fetch_by_id("nowhere") is None


async def test_by_id_remote_not_found_is_final(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([make_item("a")]))
    await resolver.snapshot.write([make_item("deleted")])

    assert await resolver.fetch_by_id("deleted") is None


async def test_by_slug_exact_and_fuzzy(tmp_path: Path) -> None:
    resolver = make_resolver(
        tmp_path,
        FakeRemote([make_item("a", title="Edmonton Folk Music Festival 2025")]),
    )

    exact = await resolver.fetch_by_slug("edmonton-folk-music-festival-2025")
    fuzzy = await resolver.fetch_by_slug("edmonton-folk-festival")
    missing = await resolver.fetch_by_slug("calgary-stampede")

    assert exact.id == "a"
    assert fuzzy.id == "a"
    assert missing is None
    await resolver.tasks.drain()


async def test_event_by_slug_only_searches_events(tmp_path: Path) -> None:
    resolver = make_resolver(
        tmp_path,
        FakeRemote([make_item("article", title="Heritage Days"), make_event("event", title="Heritage Days")]),
    )

    found = await resolver.fetch_event_by_slug("heritage-days")

    assert found.id == "event"


# -------------------------------------------------------------- mutations


async def test_create_invalidates_cache_before_returning(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")])
    resolver = make_resolver(tmp_path, remote)
    await resolver.fetch_all()

    created = await resolver.create(ContentCreate(title="Fresh", content="Body"))
    after = await resolver.fetch_all()

    assert after.source == "remote"
    assert created.id in [i.id for i in after.items]
    await resolver.tasks.drain()


async def test_read_in_flight_during_create_does_not_repopulate_cache(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")], delay=0.1)
    resolver = make_resolver(tmp_path, remote)

    in_flight = asyncio.create_task(resolver.fetch_all())
    await asyncio.sleep(0.01)
    created = await resolver.create(ContentCreate(title="Fresh", content="Body"))
    after = await resolver.fetch_all()
    earlier = await in_flight
    again = await resolver.fetch_all()
    await resolver.tasks.drain()

    assert [i.id for i in earlier.items] == ["a"]
    assert created.id in [i.id for i in after.items]
    assert again.source == "cache"
    assert created.id in [i.id for i in again.items]
    assert len(remote.collection_calls) >= 2
    assert created.id in [i.id for i in await resolver.snapshot.read()]


async def test_create_schedules_snapshot_refresh_and_local_resync(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")])
    resolver = make_resolver(tmp_path, remote)

    created = await resolver.create(ContentCreate(title="Fresh", content="Body"))
    await resolver.tasks.drain()

    assert created.id in [i.id for i in await resolver.snapshot.read()]
    assert created.id in [i.id for i in await resolver.local.read_all()]
    assert resolver.tasks.failed == 0


async def test_create_degrades_to_local_store(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")], fail_mutations=True)
    resolver = make_resolver(tmp_path, remote)
    await resolver.fetch_all()

    created = await resolver.create(ContentCreate(title="Offline", content="Body", type="event"))

    assert created.id.startswith("event-")
    assert (await resolver.local.read_by_id(created.id)).title == "Offline"
    assert resolver.cache.get_collection("all") is MISS
    await resolver.tasks.drain()


async def test_degraded_create_keeps_unreadable_local_file(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail_mutations=True))
    truncated = '[{"id": "keep-1", "title": "One"}, {"id": "keep-2", "title": "Tw'
    resolver.local.path.write_text(truncated, encoding="utf-8")

    with pytest.raises(LocalStoreError):
        await resolver.create(ContentCreate(title="Offline", content="Body"))

    assert resolver.local.path.read_text(encoding="utf-8") == truncated


async def test_update_unknown_id_raises(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([make_item("a")]))

    with pytest.raises(ContentNotFoundError):
        await resolver.update("ghost", ContentUpdate(title="x"))


async def test_update_and_delete(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a"), make_item("b")])
    resolver = make_resolver(tmp_path, remote)

    updated = await resolver.update("a", ContentUpdate(title="Renamed"))
    deleted = await resolver.delete("b")
    missing = await resolver.delete("b")
    await resolver.tasks.drain()

    assert updated.title == "Renamed"
    assert deleted is True
    assert missing is False
    assert [i.id for i in (await resolver.fetch_all()).items] == ["a"]
    await resolver.tasks.drain()


async def test_degraded_delete_of_unknown_id(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail_mutations=True))
    await resolver.local.replace_all([{"id": "a"}])

    assert await resolver.delete("a") is True
    assert await resolver.delete("a") is False


# ------------------------------------------------------------- maintenance


async def test_refresh_snapshot_reports_failure(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))

    result = await resolver.refresh_snapshot()

    assert result.success is False
    assert "error" in result.error


async def test_refresh_snapshot_and_stats(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote([make_item("a"), make_item("b")]))

    result = await resolver.refresh_snapshot()
    stats = await resolver.snapshot_stats()

    assert result.success is True and result.count == 2
    assert stats.exists and stats.item_count == 2


async def test_clear_cache(tmp_path: Path) -> None:
    remote = FakeRemote([make_item("a")])
    resolver = make_resolver(tmp_path, remote)
    await resolver.fetch_all()

    resolver.clear_cache()
    await resolver.fetch_all()

    assert len(remote.collection_calls) == 2
    await resolver.tasks.drain()


# ------------------------------------------------------- literal scenarios


async def test_city_filter_matches_category_text_only(tmp_path: Path) -> None:
    item = make_item("fd", title="Patio season", category="Food & Drink - Calgary", location=None)
    resolver = make_resolver(tmp_path, FakeRemote([item]))

    calgary = await resolver.fetch_city_articles("calgary")
    edmonton = await resolver.fetch_city_articles("edmonton")

    assert [i.id for i in calgary.items] == ["fd"]
    assert edmonton.items == []


async def test_upcoming_events_uses_date_field(tmp_path: Path) -> None:
    items = [
        make_item("a", title="Calgary Jazz Fest", date="2099-01-01", type="event", location="Calgary"),
        make_item("b", title="Old News", date="2001-01-01", type="article"),
    ]
    resolver = make_resolver(tmp_path, FakeRemote(items))

    upcoming = await resolver.fetch_upcoming_events()

    assert [i.id for i in upcoming.items] == ["a"]


async def test_expired_cache_is_not_resurrected_when_remote_fails(tmp_path: Path) -> None:
    clock = FakeClock()
    remote = FakeRemote([make_item("live")])
    resolver = make_resolver(tmp_path, remote, clock=clock, ttl=120)
    await resolver.fetch_all()
    await resolver.tasks.drain()
    await resolver.snapshot.write([make_item("x", title="Cached Piece")])

    remote.fail = True
    clock.advance(121)
    resolution = await resolver.fetch_all()

    assert resolution.source == "snapshot"
    assert [i.id for i in resolution.items] == ["x"]


async def test_slug_lookup_through_fallback_tier(tmp_path: Path) -> None:
    resolver = make_resolver(tmp_path, FakeRemote(fail=True))
    await resolver.snapshot.write([make_item("x", title="Cached Piece"), make_item("y", title="Other Piece")])
    stored = await resolver.snapshot.read()

    for item in stored:
        found = await resolver.fetch_by_slug(item.slug)
        assert found.slug == item.slug
        assert found.id == item.id
