"""
Snapshot store: a size-bounded, lossy projection of the full collection.

The snapshot is rewritten whole from every successful full remote read and
is the first fallback when the remote store is down. Long text fields are
capped so the file stays small enough to load on every cold start.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from app.config import settings
from app.core.logging import get_logger
from app.models.content import ContentItem, SnapshotStats
from services.content_mapper import record_to_item

logger = get_logger().bind(module="snapshot_store")

MAX_TITLE_LENGTH = 80
MAX_EXCERPT_LENGTH = 150
MAX_CONTENT_LENGTH = 1_000_000
ELLIPSIS = "..."

DEFAULT_CATEGORY = "General"
DEFAULT_AUTHOR = "Culture Alberta"


def _cap(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def project(item: ContentItem) -> Dict[str, Any]:
    """Capped, camelCase snapshot record for one item."""
    data = item.model_dump(by_alias=True, exclude={"slug"})
    data.update(
        {
            "title": _cap(item.title, MAX_TITLE_LENGTH),
            "excerpt": _cap(item.excerpt, MAX_EXCERPT_LENGTH),
            "description": item.description or "",
            "content": _cap(item.content, MAX_CONTENT_LENGTH),
            "category": item.category or DEFAULT_CATEGORY,
            "status": item.status or "published",
            "type": item.type or "article",
            "author": item.author or DEFAULT_AUTHOR,
            "date": item.sort_date,
        }
    )
    return data


def _write_atomic(path: Path, payload: str) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path.stat().st_size


def _read_text(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


class SnapshotStore:
    def __init__(
        self,
        path: Union[str, Path, None] = None,
        *,
        warn_kb: Optional[int] = None,
    ) -> None:
        self.path = Path(path or settings.SNAPSHOT_PATH)
        self.warn_kb = warn_kb if warn_kb is not None else settings.SNAPSHOT_WARN_KB

    async def write(self, items: Sequence[ContentItem]) -> None:
        """Overwrite the snapshot with ``items``. Raises on IO failure."""
        records = [project(item) for item in items]
        payload = json.dumps(records, ensure_ascii=False, indent=2)
        size = await asyncio.to_thread(_write_atomic, self.path, payload)

        size_kb = round(size / 1024)
        logger.info("snapshot_written", path=str(self.path), size_kb=size_kb, count=len(records))
        if size_kb > self.warn_kb:
            logger.warning(
                "snapshot_oversized",
                size_kb=size_kb,
                warn_kb=self.warn_kb,
                hint="tighten excerpt/content caps",
            )

    async def read(self) -> List[ContentItem]:
        """Snapshot contents; a missing or unreadable file reads as empty."""
        try:
            text = await asyncio.to_thread(_read_text, self.path)
        except UnicodeDecodeError as exc:
            logger.error("snapshot_corrupt", path=str(self.path), error=str(exc))
            return []
        except OSError as exc:
            logger.error("snapshot_read_failed", path=str(self.path), error=str(exc))
            return []
        if text is None:
            logger.info("snapshot_missing", path=str(self.path))
            return []

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("snapshot_corrupt", path=str(self.path), error=str(exc))
            return []
        if not isinstance(raw, list):
            logger.error("snapshot_corrupt", path=str(self.path), error="top-level value is not a list")
            return []

        items: List[ContentItem] = []
        for record in raw:
            if not isinstance(record, dict):
                continue
            item = record_to_item(record)
            if item is not None:
                items.append(item)
        logger.debug("snapshot_loaded", count=len(items))
        return items

    async def stats(self) -> SnapshotStats:
        try:
            text = await asyncio.to_thread(_read_text, self.path)
            if text is None:
                return SnapshotStats(exists=False)
            st = self.path.stat()
            records = json.loads(text)
            return SnapshotStats(
                exists=True,
                size_kb=round(st.st_size / 1024),
                item_count=len(records) if isinstance(records, list) else 0,
                last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
            )
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            return SnapshotStats(exists=False, error=str(exc))
