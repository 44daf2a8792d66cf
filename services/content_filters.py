"""
Client-side content predicates.

Server-side filters are substring matches and can be partial, so the
resolver re-applies these predicates to whatever tier answered.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from dateutil import parser as date_parser

from app.core.logging import get_logger
from app.models.content import ContentItem

logger = get_logger().bind(module="content_filters")

# Named sections with keyword matching, as on the food & drink and culture pages.
SECTION_KEYWORDS = {
    "food-drink": ("food", "drink", "restaurant", "cafe", "brewery", "food & drink"),
    "culture": (
        "culture", "art", "music", "theater", "museum",
        "festival", "heritage", "indigenous", "community",
    ),
}

_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%b %d %Y", "%Y-%m-%d", "%d %B %Y")
_RANGE_SPLIT = re.compile(r"\s+[-–—]\s+|\s+to\s+")
_YEAR_TAIL = re.compile(r"(\d{4})\s*$")


def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()


def _any_contains(values: Iterable[str], needle: str) -> bool:
    return any(needle in v.lower() for v in values if v)


def is_event(item: ContentItem) -> bool:
    return item.is_event


def matches_city(item: ContentItem, city: str) -> bool:
    """City membership: category, location, categories, tags or title mentions the city."""
    needle = city.strip().lower()
    if not needle:
        return False
    return (
        _contains(item.category, needle)
        or _contains(item.location, needle)
        or _any_contains(item.categories, needle)
        or _any_contains(item.tags, needle)
        or _contains(item.title, needle)
    )


def matches_category(item: ContentItem, category: str) -> bool:
    keywords = SECTION_KEYWORDS.get(category.strip().lower(), (category.strip().lower(),))
    return any(
        _contains(item.category, kw)
        or _any_contains(item.categories, kw)
        or _any_contains(item.tags, kw)
        for kw in keywords
        if kw
    )


def _with_utc(parsed: datetime) -> datetime:
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_strict(text: str) -> Optional[datetime]:
    text = text.strip().rstrip(",")
    if not text:
        return None
    try:
        return _with_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return _with_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def _parse_loose(text: str) -> Optional[datetime]:
    try:
        return _with_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def parse_event_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an event date, using only the first bound of a range.

    ``"August 15 - 17, 2025"`` and ``"August 30 - September 2, 2025"`` both
    resolve to their start day; a start without a year borrows the year
    from the end of the string. Free-form single dates go through dateutil.
    """
    if not value or not value.strip():
        return None
    text = value.strip()

    parsed = _parse_strict(text)
    if parsed is not None:
        return parsed

    parts = _RANGE_SPLIT.split(text, maxsplit=1)
    if len(parts) != 2:
        return _parse_loose(text)
    first, rest = parts
    parsed = _parse_strict(first)
    if parsed is not None:
        return parsed
    year = _YEAR_TAIL.search(rest)
    if year:
        return _parse_strict(f"{first.strip()}, {year.group(1)}")
    return None


def event_start(item: ContentItem) -> Optional[str]:
    return item.event_date or item.date or item.created_at


def is_upcoming(item: ContentItem, now: datetime) -> bool:
    raw = event_start(item)
    start = parse_event_date(raw)
    if start is None:
        logger.warning("event_date_unparseable", id=item.id, date=raw)
        return False
    if ":" not in raw:
        # Day-only dates stay upcoming for the whole day.
        return start.date() >= now.astimezone(timezone.utc).date()
    return start >= now


def dedupe_by_id(items: Sequence[ContentItem]) -> List[ContentItem]:
    seen = set()
    out: List[ContentItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out


def _sort_key(value: Optional[str]) -> datetime:
    parsed = parse_event_date(value) if value else None
    return parsed or datetime.min.replace(tzinfo=timezone.utc)


def sort_by_date(items: Sequence[ContentItem], *, newest_first: bool = True) -> List[ContentItem]:
    def key(item: ContentItem) -> datetime:
        value = event_start(item) if item.is_event else item.sort_date
        return _sort_key(value)

    return sorted(items, key=key, reverse=newest_first)
