from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.models.content import FLAG_FIELDS, ContentItem, ContentListResponse
from services.content_resolver import ContentResolver, get_content_resolver
from services.content_tiers import Resolution

router = APIRouter(
    prefix="/content",
    tags=["content"],
)


def _to_response(resolution: Resolution, limit: Optional[int] = None) -> ContentListResponse:
    items = resolution.items if limit is None else resolution.items[:limit]
    return ContentListResponse(items=items, total=len(items), source=resolution.source)


@router.get("", response_model=ContentListResponse)
async def list_content(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    return _to_response(await resolver.fetch_all(), limit)


@router.get("/homepage", response_model=ContentListResponse)
async def homepage_content(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    return _to_response(await resolver.fetch_homepage(limit=limit))


@router.get("/events", response_model=ContentListResponse)
async def list_events(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    return _to_response(await resolver.fetch_events(), limit)


@router.get("/events/upcoming", response_model=ContentListResponse)
async def list_upcoming_events(
    limit: int = Query(default=10, ge=1, le=100),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    return _to_response(await resolver.fetch_upcoming_events(limit=limit))


@router.get("/events/slug/{slug}", response_model=ContentItem)
async def get_event_by_slug(
    slug: str = Path(..., min_length=1),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentItem:
    item = await resolver.fetch_event_by_slug(slug)
    if item is None:
        raise HTTPException(status_code=404, detail=f"event '{slug}' not found")
    return item


@router.get("/city/{city}", response_model=ContentListResponse)
async def list_city_articles(
    city: str = Path(..., min_length=1),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    return _to_response(await resolver.fetch_city_articles(city), limit)


@router.get("/category/{category}", response_model=ContentListResponse)
async def list_category_articles(
    category: str = Path(..., min_length=1),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    return _to_response(await resolver.fetch_category_articles(category), limit)


@router.get("/flagged/{flag}", response_model=ContentListResponse)
async def list_flagged(
    flag: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentListResponse:
    normalized = flag.strip().lower().replace("-", "_")
    if normalized not in FLAG_FIELDS:
        raise HTTPException(status_code=400, detail=f"Unknown flag '{flag}'.")
    return _to_response(await resolver.fetch_flagged(normalized), limit)


@router.get("/slug/{slug}", response_model=ContentItem)
async def get_by_slug(
    slug: str = Path(..., min_length=1),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentItem:
    item = await resolver.fetch_by_slug(slug)
    if item is None:
        raise HTTPException(status_code=404, detail=f"content '{slug}' not found")
    return item


# Keep last: matches any single path segment.
@router.get("/{content_id}", response_model=ContentItem)
async def get_by_id(
    content_id: str,
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentItem:
    item = await resolver.fetch_by_id(content_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"content '{content_id}' not found")
    return item
