"""
Out-of-band resync: rewrite the raw local store from the remote collection.

Runs after every successful remote mutation (best effort) and from the
``content_sync_bot`` worker. Never raises.
"""

from __future__ import annotations

from typing import Optional

from app.core.logging import get_logger
from app.models.content import SyncResult
from services.local_store import LocalContentStore
from services.remote_content_service import RemoteContentSource

logger = get_logger().bind(module="content_sync_service")


async def sync_local_store(
    remote: RemoteContentSource,
    local: LocalContentStore,
    *,
    timeout: Optional[float] = None,
) -> SyncResult:
    logger.info("content_sync_started", path=str(local.path))
    try:
        records = await remote.fetch_raw_collection(timeout=timeout)
    except Exception as exc:
        logger.error("content_sync_remote_failed", error=str(exc), error_type=type(exc).__name__)
        return SyncResult(success=False, count=0, error=str(exc))

    if not records:
        # An empty answer is more likely an outage than an empty site; keep the old file.
        logger.warning("content_sync_empty_remote")
        return SyncResult(success=True, count=0)

    try:
        count = await local.replace_all(records)
    except OSError as exc:
        logger.error("content_sync_write_failed", error=str(exc))
        return SyncResult(success=False, count=0, error=str(exc))

    logger.info("content_sync_finished", count=count)
    return SyncResult(success=True, count=count)
