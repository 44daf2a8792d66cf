from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Path

from app.core.logging import get_logger
from app.deps.admin_auth import verify_admin_token
from app.models.content import (
    ContentCreate,
    ContentItem,
    ContentUpdate,
    SnapshotStats,
    SyncResult,
)
from services.content_errors import ContentNotFoundError, InvalidContentError, LocalStoreError
from services.content_resolver import ContentResolver, get_content_resolver

router = APIRouter(
    prefix="/admin/content",
    tags=["admin-content"],
    dependencies=[Depends(verify_admin_token)],
)

logger = get_logger().bind(module="admin_content")


@router.post("", response_model=ContentItem, status_code=201)
async def create_content(
    payload: ContentCreate = Body(...),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentItem:
    try:
        item = await resolver.create(payload)
    except InvalidContentError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except LocalStoreError:
        raise HTTPException(status_code=503, detail="content store unavailable")
    logger.info("admin_content_created", id=item.id, type=item.type)
    return item


@router.put("/{content_id}", response_model=ContentItem)
async def update_content(
    content_id: str = Path(..., min_length=1),
    payload: ContentUpdate = Body(...),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> ContentItem:
    try:
        item = await resolver.update(content_id, payload)
    except ContentNotFoundError:
        raise HTTPException(status_code=404, detail=f"content '{content_id}' not found")
    except InvalidContentError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except LocalStoreError:
        raise HTTPException(status_code=503, detail="content store unavailable")
    logger.info("admin_content_updated", id=content_id)
    return item


@router.delete("/{content_id}")
async def delete_content(
    content_id: str = Path(..., min_length=1),
    resolver: ContentResolver = Depends(get_content_resolver),
) -> Dict[str, Any]:
    try:
        deleted = await resolver.delete(content_id)
    except LocalStoreError:
        raise HTTPException(status_code=503, detail="content store unavailable")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"content '{content_id}' not found")
    logger.info("admin_content_deleted", id=content_id)
    return {"ok": True, "id": content_id}


@router.post("/cache/clear")
async def clear_content_cache(
    resolver: ContentResolver = Depends(get_content_resolver),
) -> Dict[str, Any]:
    resolver.clear_cache()
    return {"ok": True}


@router.post("/snapshot/refresh", response_model=SyncResult)
async def refresh_snapshot(
    resolver: ContentResolver = Depends(get_content_resolver),
) -> SyncResult:
    resolver.clear_cache()
    return await resolver.refresh_snapshot()


@router.get("/snapshot/stats", response_model=SnapshotStats)
async def snapshot_stats(
    resolver: ContentResolver = Depends(get_content_resolver),
) -> SnapshotStats:
    return await resolver.snapshot_stats()


@router.post("/sync", response_model=SyncResult)
async def sync_local_store(
    resolver: ContentResolver = Depends(get_content_resolver),
) -> SyncResult:
    return await resolver.sync_local()


@router.get("/cache/stats")
async def cache_stats(
    resolver: ContentResolver = Depends(get_content_resolver),
) -> Dict[str, Any]:
    return {
        **resolver.cache.stats(),
        "inflight": resolver.deduper.inflight,
        "background_pending": resolver.tasks.pending,
        "background_failed": resolver.tasks.failed,
    }
