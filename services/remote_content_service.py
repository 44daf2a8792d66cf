"""
Remote Source Adapter: the hosted Postgres ``articles`` table.

Reads are raced against a per-call timeout and never raise; they answer
with a ``Hit`` or a ``Miss`` so the resolver can fall through to the local
tiers. Mutations raise ``RemoteSourceError`` so the caller can decide to
degrade to the local store.
"""

from __future__ import annotations

import asyncio
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import asyncpg

from app.config import settings
from app.core.logging import get_logger
from app.models.content import FLAG_FIELDS, ContentItem
from services.content_errors import (
    ContentNotFoundError,
    RemoteSourceError,
    RemoteSourceUnavailable,
)
from services.content_mapper import RECORD_FIELDS, record_to_dict, record_to_item, records_to_items
from services.content_tiers import Hit, Miss, TierResult
from services.db_service import execute, fetch, fetchrow

logger = get_logger().bind(module="remote_content_service")

IMAGE_FIELDS = ("image_url", "image")
SORTABLE_FIELDS = {"created_at", "updated_at", "event_date", "title"}
WRITABLE_FIELDS = tuple(
    f for f in RECORD_FIELDS if f not in {"id", "image", "date", "created_at", "updated_at"}
)
_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def ensure_image_fields(fields: Optional[Sequence[str]]) -> Optional[List[str]]:
    """Append the image columns to an explicit field list; ``None`` means ``*``."""
    if fields is None:
        return None
    selected = list(fields)
    for name in IMAGE_FIELDS:
        if name not in selected:
            selected.append(name)
    return selected


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass(frozen=True)
class ContentFilter:
    type: Optional[str] = None
    status: Optional[str] = None
    city: Optional[str] = None
    category: Optional[str] = None
    flag: Optional[str] = None
    ids: Optional[Tuple[str, ...]] = None

    @property
    def is_empty(self) -> bool:
        return not any((self.type, self.status, self.city, self.category, self.flag, self.ids))


@dataclass(frozen=True)
class ContentQuery:
    filter: ContentFilter = field(default_factory=ContentFilter)
    sort: str = "created_at"
    descending: bool = True
    limit: Optional[int] = None
    fields: Optional[Tuple[str, ...]] = None

    @property
    def is_full_collection(self) -> bool:
        return self.filter.is_empty and self.limit is None


def _text_match_sql(placeholder: str, columns: Sequence[str], array_columns: Sequence[str]) -> str:
    parts = [f"{col} ILIKE {placeholder}" for col in columns]
    parts += [
        f"EXISTS (SELECT 1 FROM unnest(coalesce({col}, '{{}}'::text[])) AS v(x) WHERE v.x ILIKE {placeholder})"
        for col in array_columns
    ]
    return "(" + " OR ".join(parts) + ")"


def build_select_sql(table: str, query: ContentQuery) -> Tuple[str, List[Any]]:
    if not _IDENTIFIER.match(table):
        raise ValueError(f"invalid table name: {table!r}")

    fields = ensure_image_fields(query.fields)
    if fields is not None:
        for name in fields:
            if not _IDENTIFIER.match(name):
                raise ValueError(f"invalid field name: {name!r}")
        columns = ", ".join(fields)
    else:
        columns = "*"

    params: List[Any] = []
    clauses: List[str] = []
    flt = query.filter

    if flt.type:
        params.append(flt.type)
        clauses.append(f"lower(type) = lower(${len(params)})")
    if flt.status:
        params.append(flt.status)
        clauses.append(f"status = ${len(params)}")
    if flt.city:
        params.append(_like_pattern(flt.city))
        clauses.append(
            _text_match_sql(f"${len(params)}", ("category", "location", "title"), ("categories", "tags"))
        )
    if flt.category:
        params.append(_like_pattern(flt.category))
        clauses.append(_text_match_sql(f"${len(params)}", ("category",), ("categories", "tags")))
    if flt.flag:
        if flt.flag not in FLAG_FIELDS:
            raise ValueError(f"unknown flag: {flt.flag!r}")
        clauses.append(f"coalesce({flt.flag}, false) = true")
    if flt.ids:
        params.append(list(flt.ids))
        clauses.append(f"id = ANY(${len(params)}::text[])")

    sort = query.sort if query.sort in SORTABLE_FIELDS else "created_at"
    direction = "DESC" if query.descending else "ASC"

    sql = f"SELECT {columns} FROM {table}"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += f" ORDER BY {sort} {direction} NULLS LAST"
    if query.limit is not None:
        params.append(int(query.limit))
        sql += f" LIMIT ${len(params)}"
    return sql, params


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteContentSource:
    def __init__(
        self,
        table: Optional[str] = None,
        *,
        mutation_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.table = table or settings.CONTENT_TABLE
        if not _IDENTIFIER.match(self.table):
            raise ValueError(f"invalid table name: {self.table!r}")
        self.mutation_timeout = mutation_timeout or settings.REMOTE_TIMEOUT_COLLECTION_SECONDS
        self._clock = clock

    # ------------------------------------------------------------------ reads

    async def _fetch_records(self, query: ContentQuery) -> List[Dict[str, Any]]:
        sql, params = build_select_sql(self.table, query)
        rows = await fetch(sql, *params)
        return [record_to_dict(row) for row in rows]

    async def fetch_raw_collection(
        self,
        query: Optional[ContentQuery] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Raw remote-shaped records; raises ``RemoteSourceError`` on any failure."""
        query = query or ContentQuery()
        try:
            return await asyncio.wait_for(self._fetch_records(query), timeout=timeout)
        except RemoteSourceError:
            raise
        except asyncio.TimeoutError as exc:
            raise RemoteSourceError(f"remote query timed out after {timeout}s") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise RemoteSourceError(str(exc)) from exc

    async def fetch_collection(self, query: ContentQuery, *, timeout: float) -> TierResult:
        try:
            records = await self.fetch_raw_collection(query, timeout=timeout)
        except RemoteSourceUnavailable as exc:
            logger.warning("remote_unavailable", error=str(exc))
            return Miss(tier="remote", reason="unavailable")
        except RemoteSourceError as exc:
            reason = "timeout" if isinstance(exc.__cause__, asyncio.TimeoutError) else "error"
            logger.warning("remote_collection_failed", reason=reason, error=str(exc), timeout=timeout)
            return Miss(tier="remote", reason=reason)
        except Exception as exc:
            logger.error("remote_collection_unexpected_error", error=str(exc), error_type=type(exc).__name__)
            return Miss(tier="remote", reason="error")

        items = records_to_items(records)
        logger.info("remote_collection_loaded", count=len(items), full=query.is_full_collection)
        return Hit(tier="remote", items=items)

    async def fetch_by_id(self, content_id: str, *, timeout: float) -> TierResult:
        sql = f"SELECT * FROM {self.table} WHERE id = $1"
        try:
            row = await asyncio.wait_for(fetchrow(sql, content_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("remote_item_timeout", id=content_id, timeout=timeout)
            return Miss(tier="remote", reason="timeout")
        except RemoteSourceUnavailable as exc:
            logger.warning("remote_unavailable", error=str(exc))
            return Miss(tier="remote", reason="unavailable")
        except Exception as exc:
            logger.warning("remote_item_failed", id=content_id, error=str(exc), error_type=type(exc).__name__)
            return Miss(tier="remote", reason="error")

        if row is None:
            return Miss(tier="remote", reason="not_found")
        item = record_to_item(record_to_dict(row))
        if item is None:
            return Miss(tier="remote", reason="invalid_record")
        return Hit(tier="remote", items=[item])

    # -------------------------------------------------------------- mutations

    def new_id(self, content_type: Optional[str]) -> str:
        prefix = "event" if (content_type or "").lower() == "event" else "article"
        millis = int(self._clock().timestamp() * 1000)
        return f"{prefix}-{millis}-{secrets.token_hex(5)[:9]}"

    async def _mutate(self, method: Callable[..., Any], sql: str, *params: Any) -> Any:
        try:
            return await asyncio.wait_for(method(sql, *params), timeout=self.mutation_timeout)
        except RemoteSourceError:
            raise
        except asyncio.TimeoutError as exc:
            raise RemoteSourceError(f"remote mutation timed out after {self.mutation_timeout}s") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise RemoteSourceError(str(exc)) from exc

    async def create(self, data: Dict[str, Any]) -> ContentItem:
        now = self._clock()
        record: Dict[str, Any] = {k: data.get(k) for k in WRITABLE_FIELDS if k in data}
        record["type"] = record.get("type") or "article"
        record["status"] = record.get("status") or "published"
        record["tags"] = record.get("tags") or []
        if not record.get("categories"):
            record["categories"] = [record["category"]] if record.get("category") else []
        for flag in FLAG_FIELDS:
            record[flag] = bool(record.get(flag))
        record["id"] = self.new_id(record["type"])
        record["created_at"] = now
        record["updated_at"] = now

        columns = list(record.keys())
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        sql = (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        row = await self._mutate(fetchrow, sql, *record.values())
        if row is None:
            raise RemoteSourceError("insert returned no row")
        item = record_to_item(record_to_dict(row))
        if item is None:
            raise RemoteSourceError("insert returned an invalid record")
        logger.info("remote_content_created", id=item.id, type=item.type)
        return item

    async def update(self, content_id: str, data: Dict[str, Any]) -> ContentItem:
        changes: Dict[str, Any] = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}
        changes["updated_at"] = self._clock()

        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(changes, start=1))
        sql = (
            f"UPDATE {self.table} SET {assignments} "
            f"WHERE id = ${len(changes) + 1} RETURNING *"
        )
        row = await self._mutate(fetchrow, sql, *changes.values(), content_id)
        if row is None:
            raise ContentNotFoundError(content_id)
        item = record_to_item(record_to_dict(row))
        if item is None:
            raise RemoteSourceError("update returned an invalid record")
        logger.info("remote_content_updated", id=content_id, fields=sorted(changes))
        return item

    async def delete(self, content_id: str) -> bool:
        status = await self._mutate(execute, f"DELETE FROM {self.table} WHERE id = $1", content_id)
        deleted = str(status).strip() != "DELETE 0"
        logger.info("remote_content_deleted", id=content_id, deleted=deleted)
        return deleted
