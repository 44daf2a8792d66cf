"""
Raw local store: a full-fidelity JSON array of remote-shaped records.

Bottom rung of the fallback chain and the build-time source when the remote
store is unreachable. It is not kept in sync by normal mutations; only an
explicit resync (``replace_all``) or a degraded mutation writes it.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from app.config import settings
from app.core.logging import get_logger
from app.models.content import ContentItem
from services.content_errors import ContentNotFoundError, InvalidContentError, LocalStoreError
from services.content_mapper import item_to_record, jsonable, record_to_item, records_to_items

logger = get_logger().bind(module="local_store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"{path} does not hold a JSON array")
    return [r for r in raw if isinstance(r, dict)]


def _dump(path: Path, records: Sequence[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(jsonable(list(records)), fh, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class LocalContentStore:
    def __init__(
        self,
        path: Union[str, Path, None] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.path = Path(path or settings.LOCAL_STORE_PATH)
        self._clock = clock
        # Read-modify-write cycles must not interleave inside one process.
        self._lock = asyncio.Lock()

    async def _records_for_write(self) -> List[Dict[str, Any]]:
        # Rewriting from a file that failed to load would drop every record in it.
        try:
            return await asyncio.to_thread(_load, self.path)
        except (OSError, ValueError) as exc:
            logger.error("local_store_write_refused", path=str(self.path), error=str(exc))
            raise LocalStoreError(f"cannot load {self.path} for writing: {exc}") from exc

    async def _records(self) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(_load, self.path)
        except (OSError, ValueError) as exc:
            logger.error("local_store_read_failed", path=str(self.path), error=str(exc))
            return []

    async def read_all(self) -> List[ContentItem]:
        items = records_to_items(await self._records())
        logger.debug("local_store_loaded", count=len(items))
        return items

    async def read_by_id(self, content_id: str) -> Optional[ContentItem]:
        for record in await self._records():
            if str(record.get("id")) == content_id:
                return record_to_item(record)
        return None

    async def replace_all(self, records: Sequence[Dict[str, Any]]) -> int:
        async with self._lock:
            await asyncio.to_thread(_dump, self.path, records)
        logger.info("local_store_replaced", path=str(self.path), count=len(records))
        return len(records)

    async def create(self, data: Dict[str, Any], *, content_id: Optional[str] = None) -> ContentItem:
        now = self._clock().isoformat()
        async with self._lock:
            records = await self._records_for_write()
            payload = dict(data)
            payload.setdefault("categories", [data["category"]] if data.get("category") else [])
            payload.update(
                {
                    "id": content_id or f"local-{int(self._clock().timestamp() * 1000)}",
                    "created_at": now,
                    "updated_at": now,
                }
            )
            item = record_to_item(payload)
            if item is None:
                raise InvalidContentError("cannot build a content item from the given data")
            records.insert(0, item_to_record(item))
            await asyncio.to_thread(_dump, self.path, records)
        logger.info("local_store_created", id=item.id)
        return item

    async def update(self, content_id: str, data: Dict[str, Any]) -> ContentItem:
        async with self._lock:
            records = await self._records_for_write()
            for index, record in enumerate(records):
                if str(record.get("id")) != content_id:
                    continue
                current = record_to_item(record)
                if current is None:
                    break
                merged = item_to_record(current)
                merged.update(data)
                merged["id"] = content_id
                merged["updated_at"] = self._clock().isoformat()
                item = record_to_item(merged)
                if item is None:
                    raise InvalidContentError(f"update would make '{content_id}' invalid")
                records[index] = item_to_record(item)
                await asyncio.to_thread(_dump, self.path, records)
                logger.info("local_store_updated", id=content_id)
                return item
        raise ContentNotFoundError(content_id)

    async def delete(self, content_id: str) -> None:
        async with self._lock:
            records = await self._records_for_write()
            remaining = [r for r in records if str(r.get("id")) != content_id]
            if len(remaining) == len(records):
                raise ContentNotFoundError(content_id)
            await asyncio.to_thread(_dump, self.path, remaining)
        logger.info("local_store_deleted", id=content_id)
