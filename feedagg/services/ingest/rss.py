"""RSS fetching and parsing."""

from __future__ import annotations

import contextlib
import io
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
import requests

from feedagg.errors import FetchError, ParseError

LOGGER = logging.getLogger(__name__)

_USER_AGENT = "feedagg/0.1"
_CHUNK_SIZE = 16 * 1024
_HEADERS = {
    "User-Agent": _USER_AGENT,
    "Accept": "application/rss+xml, application/xml;q=0.9, */*;q=0.8",
}

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_BYTES = 5 * 1024 * 1024


@dataclass
class FeedEntry:
    title: str
    link: str
    guid: str
    published_at: Optional[datetime] = None
    description: Optional[str] = None

    @property
    def key(self) -> str:
        """Identity of the entry within its feed: the link, else the guid."""
        return self.link or self.guid


@dataclass
class FeedDocument:
    title: str
    description: str = ""
    link: str = ""
    entries: List[FeedEntry] = field(default_factory=list)


def _struct_time_to_datetime(value) -> Optional[datetime]:
    """Convert feedparser's UTC struct_time into an aware ``datetime``."""

    if value is None:
        return None
    try:
        return datetime(*value[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _normalize_entries(raw_entries) -> List[FeedEntry]:
    """Normalize feedparser entries into :class:`FeedEntry` objects in document order."""

    entries: List[FeedEntry] = []
    for entry in raw_entries or []:
        published_struct = entry.get("published_parsed") or entry.get("updated_parsed")
        description = entry.get("summary") or entry.get("description") or None
        entries.append(
            FeedEntry(
                title=(entry.get("title") or "").strip(),
                link=(entry.get("link") or "").strip(),
                guid=(entry.get("id") or "").strip(),
                published_at=_struct_time_to_datetime(published_struct),
                description=description,
            )
        )
    return entries


def parse_document(body: bytes, url: str = "") -> FeedDocument:
    """Parse an RSS body into a :class:`FeedDocument`.

    Raises :class:`ParseError` when ``feedparser`` cannot read the body as a
    feed at all. Recoverable quirks (a wrong declared encoding, say) are
    tolerated as long as entries come out.
    """

    # A file object keeps feedparser from treating the body as a path or URL.
    parsed = feedparser.parse(io.BytesIO(body))
    raw_entries = parsed.get("entries") or []
    if not raw_entries and (parsed.get("bozo") or not parsed.get("version")):
        cause = parsed.get("bozo_exception") or "not a syndication document"
        raise ParseError(url, cause)

    channel = parsed.get("feed") or {}
    return FeedDocument(
        title=channel.get("title", ""),
        description=channel.get("subtitle") or channel.get("description") or "",
        link=channel.get("link", ""),
        entries=_normalize_entries(raw_entries),
    )


def _read_body(response, url: str, *, deadline: float, max_bytes: int) -> bytes:
    chunks: List[bytes] = []
    size = 0
    try:
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise FetchError(url, "timeout: deadline exceeded while reading body")
            size += len(chunk)
            if size > max_bytes:
                raise FetchError(url, f"response larger than {max_bytes} bytes")
            chunks.append(chunk)
    except requests.RequestException as exc:
        raise FetchError(url, exc) from exc
    return b"".join(chunks)


def _shutdown_connection(response) -> None:
    """Wake a read blocked on ``response`` by shutting its socket down.

    Closing the response from another thread would wait for the reader to
    finish; the reading thread closes it once its read fails.
    """
    connection = getattr(getattr(response, "raw", None), "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        response.close()
        return
    with contextlib.suppress(OSError):
        sock.shutdown(socket.SHUT_RDWR)


class _Download(threading.Thread):
    """GET ``url`` and read its body off the caller's thread.

    ``fetch`` joins this thread until the deadline and abandons it after.
    Abandoning shuts down the connection of a response being read, and a
    response that only arrives later is closed as soon as it does.
    """

    def __init__(self, http, url: str, *, timeout: float, max_bytes: int, deadline: float) -> None:
        super().__init__(name=f"fetch {url}", daemon=True)
        self._http = http
        self._url = url
        self._timeout = timeout
        self._max_bytes = max_bytes
        self._deadline = deadline
        self._lock = threading.Lock()
        self._abandoned = False
        self._response = None
        self.body: Optional[bytes] = None
        self.error: Optional[Exception] = None

    def run(self) -> None:
        try:
            self.body = self._download()
        except Exception as exc:
            self.error = exc

    def _download(self) -> Optional[bytes]:
        try:
            response = self._http.get(
                self._url,
                headers=_HEADERS,
                timeout=(self._timeout, self._timeout),
                stream=True,
            )
        except requests.Timeout as exc:
            raise FetchError(self._url, f"timeout: {exc}") from exc
        except requests.RequestException as exc:
            raise FetchError(self._url, exc) from exc

        with self._lock:
            if self._abandoned:
                response.close()
                return None
            self._response = response
        try:
            if response.status_code >= 400:
                raise FetchError(
                    self._url, f"HTTP {response.status_code}", status_code=response.status_code
                )
            return _read_body(response, self._url, deadline=self._deadline, max_bytes=self._max_bytes)
        finally:
            response.close()

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            response = self._response
        if response is not None:
            _shutdown_connection(response)


def fetch(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = DEFAULT_MAX_BYTES,
    session: Optional[requests.Session] = None,
) -> FeedDocument:
    """Fetch and parse ``url``.

    Parameters
    ----------
    url:
        Address of the RSS feed.
    timeout:
        Hard deadline in seconds for the whole download: connecting,
        receiving the headers and streaming the body. A server that keeps
        trickling bytes is abandoned once it passes.
    max_bytes:
        Largest body accepted.
    session:
        Optional ``requests`` session; the module-level API is used otherwise.

    Raises
    ------
    FetchError
        Transport failure, timeout, oversized body or non-success status.
    ParseError
        The body is not a readable feed.
    """

    deadline = time.monotonic() + timeout
    download = _Download(
        session if session is not None else requests,
        url,
        timeout=timeout,
        max_bytes=max_bytes,
        deadline=deadline,
    )
    download.start()
    download.join(max(deadline - time.monotonic(), 0.0))
    if download.is_alive():
        download.abandon()
        raise FetchError(url, f"timeout: deadline of {timeout}s exceeded")
    if download.error is not None:
        raise download.error

    document = parse_document(download.body or b"", url)
    LOGGER.debug(
        "Fetched %s entries from %s", len(document.entries), url, extra={"url": url}
    )
    return document


__all__ = [
    "DEFAULT_MAX_BYTES",
    "DEFAULT_TIMEOUT",
    "FeedDocument",
    "FeedEntry",
    "fetch",
    "parse_document",
]
