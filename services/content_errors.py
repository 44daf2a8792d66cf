from __future__ import annotations


class ContentError(RuntimeError):
    """Base class for content subsystem errors."""


class RemoteSourceError(ContentError):
    """A query or mutation against the remote store failed."""


class RemoteSourceUnavailable(RemoteSourceError):
    """The remote store is not configured or cannot be reached."""


class ContentNotFoundError(ContentError):
    def __init__(self, content_id: str) -> None:
        super().__init__(f"content item '{content_id}' not found")
        self.content_id = content_id


class InvalidContentError(ContentError, ValueError):
    """Data that cannot be turned into a valid content item."""


class LocalStoreError(ContentError):
    """The local store file cannot be loaded for a write."""
