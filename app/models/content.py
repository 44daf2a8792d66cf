from __future__ import annotations

from typing import List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from services.slug_service import normalize_slug

FLAG_FIELDS = (
    "trending_home",
    "trending_edmonton",
    "trending_calgary",
    "featured_home",
    "featured_edmonton",
    "featured_calgary",
)


def clean_image_url(value: object) -> Optional[str]:
    """Keep absolute http(s) URLs, data URIs and root-relative paths; drop the rest."""
    if not isinstance(value, str):
        return None
    url = value.strip()
    if not url:
        return None
    if url.startswith("data:"):
        return url
    if url.startswith("/") and not url.startswith("//"):
        return url
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return url
    return None


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ContentItem(_CamelModel):
    """An article or an event, as served to the page layer."""

    id: str
    title: str = ""
    excerpt: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    author: Optional[str] = None
    type: Optional[str] = "article"
    status: Optional[str] = "published"
    image_url: Optional[str] = None

    date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Event extras
    event_date: Optional[str] = None
    event_end_date: Optional[str] = None
    organizer: Optional[str] = None
    organizer_contact: Optional[str] = None
    website_url: Optional[str] = None

    trending_home: bool = False
    trending_edmonton: bool = False
    trending_calgary: bool = False
    featured_home: bool = False
    featured_edmonton: bool = False
    featured_calgary: bool = False

    @field_validator("image_url", mode="before")
    @classmethod
    def _validate_image_url(cls, value: object) -> Optional[str]:
        return clean_image_url(value)

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def _coerce_list(cls, value: object) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value else []
        return [str(v) for v in value if v is not None]

    @field_validator(*FLAG_FIELDS, mode="before")
    @classmethod
    def _coerce_flag(cls, value: object) -> bool:
        return bool(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def slug(self) -> str:
        return normalize_slug(self.title)

    @property
    def sort_date(self) -> Optional[str]:
        return self.date or self.created_at

    @property
    def is_event(self) -> bool:
        return (self.type or "").strip().lower() == "event"


class ContentCreate(_CamelModel):
    title: str
    content: str
    excerpt: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    location: Optional[str] = None
    author: Optional[str] = None
    type: Optional[str] = "article"
    status: Optional[str] = "published"
    image_url: Optional[str] = None
    event_date: Optional[str] = None
    event_end_date: Optional[str] = None
    organizer: Optional[str] = None
    organizer_contact: Optional[str] = None
    website_url: Optional[str] = None
    trending_home: bool = False
    trending_edmonton: bool = False
    trending_calgary: bool = False
    featured_home: bool = False
    featured_edmonton: bool = False
    featured_calgary: bool = False


class ContentUpdate(_CamelModel):
    """Partial update; only fields the caller actually set are written."""

    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    location: Optional[str] = None
    author: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    image_url: Optional[str] = None
    event_date: Optional[str] = None
    event_end_date: Optional[str] = None
    organizer: Optional[str] = None
    organizer_contact: Optional[str] = None
    website_url: Optional[str] = None
    trending_home: Optional[bool] = None
    trending_edmonton: Optional[bool] = None
    trending_calgary: Optional[bool] = None
    featured_home: Optional[bool] = None
    featured_edmonton: Optional[bool] = None
    featured_calgary: Optional[bool] = None


ContentSource = Literal["cache", "remote", "snapshot", "local", "none"]


class ContentListResponse(_CamelModel):
    items: List[ContentItem]
    total: int
    source: ContentSource


class SyncResult(_CamelModel):
    success: bool
    count: int = 0
    error: Optional[str] = None


class SnapshotStats(_CamelModel):
    exists: bool
    size_kb: int = 0
    item_count: int = 0
    last_modified: Optional[str] = None
    error: Optional[str] = None
