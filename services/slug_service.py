"""
Slug derivation and slug-based lookup.

Slugs are never stored authoritatively: they are recomputed from the title
on every lookup, so an edited title changes the slug. ``find_by_slug`` keeps
old links working for small edits via a token-overlap fallback.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, TypeVar

MAX_SLUG_LENGTH = 100
FUZZY_MATCH_THRESHOLD = 0.7

_DISALLOWED = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")

T = TypeVar("T")


def normalize_slug(text: Optional[str]) -> str:
    """URL-safe slug for ``text``; ``normalize_slug(normalize_slug(x)) == normalize_slug(x)``."""
    if not text:
        return ""
    slug = _DISALLOWED.sub("", text.lower())
    slug = _WHITESPACE.sub("-", slug)
    slug = _HYPHENS.sub("-", slug).strip("-")
    # Truncation can leave a trailing hyphen behind.
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def slug_tokens(slug: str) -> List[str]:
    return [tok for tok in slug.split("-") if tok]


def slug_overlap(requested: str, candidate: str) -> float:
    """
    Share of requested tokens that appear in the candidate slug.

    A token counts when it contains, or is contained in, any candidate token,
    so ``festival`` still matches ``festivals``.
    """
    wanted = slug_tokens(requested)
    if not wanted:
        return 0.0
    have = slug_tokens(candidate)
    matching = [w for w in wanted if any(w in h or h in w for h in have)]
    return len(matching) / len(wanted)


def find_by_slug(
    items: Iterable[T],
    slug: str,
    *,
    threshold: float = FUZZY_MATCH_THRESHOLD,
    title_of=lambda item: getattr(item, "title", None),
) -> Optional[T]:
    """
    First item whose derived slug equals ``slug``; otherwise the first item
    clearing the fuzzy threshold. Ties go to iteration order.
    """
    wanted = normalize_slug(slug)
    if not wanted:
        return None

    candidates: Sequence[T] = list(items)
    derived = [normalize_slug(title_of(item)) for item in candidates]

    for item, item_slug in zip(candidates, derived):
        if item_slug == wanted:
            return item

    for item, item_slug in zip(candidates, derived):
        if item_slug and slug_overlap(wanted, item_slug) >= threshold:
            return item
    return None
