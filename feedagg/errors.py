"""Error taxonomy for the feed fetch-and-ingest pipeline."""

from __future__ import annotations

from typing import Optional


class FeedAggError(Exception):
    """Base class for pipeline errors."""


class BatchSelectionError(FeedAggError):
    """Raised when the due-feed batch for a tick cannot be selected."""

    def __init__(self, cause: object) -> None:
        super().__init__(f"could not list due feeds: {cause}")
        self.cause = cause


class FetchError(FeedAggError):
    """Network-layer failure while fetching one feed."""

    def __init__(self, url: str, cause: object, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"fetching {url} failed: {cause}")
        self.url = url
        self.cause = cause
        self.status_code = status_code


class ParseError(FeedAggError):
    """The fetched body is not a readable syndication document."""

    def __init__(self, url: str, cause: object) -> None:
        super().__init__(f"parsing {url} failed: {cause}")
        self.url = url
        self.cause = cause


class StoreError(FeedAggError):
    """A persistence operation failed."""

    def __init__(self, operation: str, cause: object) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class DuplicateError(StoreError):
    """The post already exists for the feed; ingestion treats this as success."""

    def __init__(self, feed_id: Optional[str], url: str) -> None:
        super().__init__("insert", f"{url!r} is already stored")
        self.feed_id = feed_id
        self.url = url


__all__ = [
    "FeedAggError",
    "BatchSelectionError",
    "FetchError",
    "ParseError",
    "StoreError",
    "DuplicateError",
]
