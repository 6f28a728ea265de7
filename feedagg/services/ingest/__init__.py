"""Ingestion service helpers."""

from .rss import DEFAULT_MAX_BYTES, DEFAULT_TIMEOUT, FeedDocument, FeedEntry, fetch, parse_document

__all__ = [
    "DEFAULT_MAX_BYTES",
    "DEFAULT_TIMEOUT",
    "FeedDocument",
    "FeedEntry",
    "fetch",
    "parse_document",
]
