"""
Tier results for the content fallback chain.

Every tier (remote, snapshot, local) answers with ``Hit`` or ``Miss``; the
chain walks the tiers in order and keeps the misses so callers can see why
a tier fell through.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from app.models.content import ContentItem, ContentSource


@dataclass(frozen=True)
class Hit:
    tier: ContentSource
    items: List[ContentItem]


@dataclass(frozen=True)
class Miss:
    tier: ContentSource
    reason: str


TierResult = Union[Hit, Miss]
Tier = Tuple[ContentSource, Callable[[], Awaitable[TierResult]]]


@dataclass
class Resolution:
    items: List[ContentItem]
    source: ContentSource
    misses: List[Miss] = field(default_factory=list)

    @property
    def first(self) -> Optional[ContentItem]:
        return self.items[0] if self.items else None


async def resolve_chain(tiers: Sequence[Tier]) -> Resolution:
    """
    Return the first non-empty ``Hit``.

    Empty hits count as misses. If every tier falls through, the result is
    empty with ``source="none"``.
    """
    misses: List[Miss] = []
    for tier, attempt in tiers:
        result = await attempt()
        if isinstance(result, Hit) and result.items:
            return Resolution(items=result.items, source=result.tier, misses=misses)
        if isinstance(result, Hit):
            misses.append(Miss(tier=tier, reason="empty"))
        else:
            misses.append(result)
    return Resolution(items=[], source="none", misses=misses)
