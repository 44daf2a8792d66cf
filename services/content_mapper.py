"""
Mapping between remote-store records and ``ContentItem``.

Remote rows use snake_case columns (``image_url``, ``created_at``,
``trending_home``); the local JSON files written by older tooling use
camelCase keys. ``record_to_item`` accepts either.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from app.core.logging import get_logger
from app.models.content import FLAG_FIELDS, ContentItem

logger = get_logger().bind(module="content_mapper")

# Columns a remote record may carry, in store (snake_case) spelling.
RECORD_FIELDS = (
    "id",
    "title",
    "excerpt",
    "description",
    "content",
    "category",
    "categories",
    "location",
    "author",
    "tags",
    "type",
    "status",
    "image_url",
    "image",
    "date",
    "created_at",
    "updated_at",
    "event_date",
    "event_end_date",
    "organizer",
    "organizer_contact",
    "website_url",
) + FLAG_FIELDS


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _pick(record: Mapping[str, Any], name: str) -> Any:
    value = record.get(name)
    if value is None:
        value = record.get(_camel(name))
    return value


def jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    return value


def record_to_dict(record: Mapping[str, Any]) -> Dict[str, Any]:
    """asyncpg Record (or dict) to a JSON-safe dict."""
    return {str(k): jsonable(v) for k, v in dict(record).items()}


def record_to_item(record: Mapping[str, Any]) -> Optional[ContentItem]:
    if _pick(record, "id") in (None, ""):
        logger.warning("content_record_without_id", title=record.get("title"))
        return None

    created_at = _pick(record, "created_at")
    payload: Dict[str, Any] = {
        name: jsonable(_pick(record, name))
        for name in RECORD_FIELDS
        if name not in ("image", "image_url") and name not in FLAG_FIELDS
    }
    payload["id"] = str(payload["id"])
    payload["title"] = payload.get("title") or ""
    payload["image_url"] = _pick(record, "image_url") or record.get("image")
    payload["date"] = (
        jsonable(_pick(record, "date"))
        or jsonable(_pick(record, "event_date"))
        or jsonable(created_at)
    )
    for flag in FLAG_FIELDS:
        payload[flag] = bool(_pick(record, flag) or False)
    # Keep model defaults for absent classification fields.
    for name in ("type", "status", "categories", "tags"):
        if payload.get(name) is None:
            payload.pop(name, None)

    try:
        return ContentItem.model_validate(payload)
    except ValidationError as exc:
        logger.warning("content_record_invalid", id=payload["id"], error=str(exc))
        return None


def records_to_items(records: Iterable[Mapping[str, Any]]) -> List[ContentItem]:
    items: List[ContentItem] = []
    for record in records:
        item = record_to_item(record)
        if item is not None:
            items.append(item)
    return items


def item_to_record(item: ContentItem) -> Dict[str, Any]:
    """Full-fidelity remote-shaped record for an item (used by the local store)."""
    data = item.model_dump(exclude={"slug"})
    record: Dict[str, Any] = {name: data.get(name) for name in RECORD_FIELDS if name != "image"}
    return record
