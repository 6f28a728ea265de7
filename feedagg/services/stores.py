"""SQLAlchemy-backed stores used by the ingestion pipeline and the API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import scoped_session

from feedagg.db import transaction
from feedagg.errors import DuplicateError, StoreError
from feedagg.models import Feed, FeedFollow, Post


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class FeedRef:
    """Detached snapshot of a feed row, safe to hand to a worker thread."""

    id: str
    name: str
    url: str
    last_fetched_at: Optional[datetime]

    @classmethod
    def from_model(cls, feed: Feed) -> "FeedRef":
        return cls(id=feed.id, name=feed.name, url=feed.url, last_fetched_at=feed.last_fetched_at)


class FeedStore:
    """Feed persistence; joins the calling thread's open transaction if any."""

    def __init__(self, sessions: scoped_session) -> None:
        self._sessions = sessions

    @property
    def sessions(self) -> scoped_session:
        return self._sessions

    def transaction(self):
        return transaction(self._sessions)

    def list_due_feeds(self, limit: int) -> List[FeedRef]:
        """Return up to ``limit`` feeds, never-fetched first, then stalest first."""
        stmt = (
            select(Feed)
            .order_by(Feed.last_fetched_at.asc().nulls_first(), Feed.created_at.asc(), Feed.id.asc())
            .limit(max(int(limit), 0))
        )
        try:
            with transaction(self._sessions) as session:
                return [FeedRef.from_model(feed) for feed in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise StoreError("list_due_feeds", exc) from exc

    def mark_fetched(self, feed_id: str, fetched_at: datetime) -> bool:
        """Advance ``last_fetched_at``; returns ``False`` when it is already newer."""
        fetched_at = to_naive_utc(fetched_at)
        stmt = (
            update(Feed)
            .where(Feed.id == feed_id)
            .where(or_(Feed.last_fetched_at.is_(None), Feed.last_fetched_at < fetched_at))
            .values(last_fetched_at=fetched_at, updated_at=fetched_at)
        )
        try:
            with transaction(self._sessions) as session:
                result = session.execute(stmt)
                if result.rowcount:
                    return True
                if session.get(Feed, feed_id) is None:
                    raise StoreError("mark_fetched", f"feed {feed_id} does not exist")
                return False
        except SQLAlchemyError as exc:
            raise StoreError("mark_fetched", exc) from exc

    def create_feed(self, *, name: str, url: str, user_id: str) -> Feed:
        try:
            with transaction(self._sessions) as session:
                feed = Feed(name=name, url=url, user_id=user_id)
                session.add(feed)
                session.flush()
                return feed
        except IntegrityError as exc:
            raise DuplicateError(None, url) from exc
        except SQLAlchemyError as exc:
            raise StoreError("create_feed", exc) from exc

    def list_feeds(self) -> List[Feed]:
        try:
            with transaction(self._sessions) as session:
                return list(session.scalars(select(Feed).order_by(Feed.id)))
        except SQLAlchemyError as exc:
            raise StoreError("list_feeds", exc) from exc


def _post_exists(session, feed_id: str, url: str) -> bool:
    stmt = select(Post.id).where(Post.feed_id == feed_id, Post.url == url).limit(1)
    return session.scalar(stmt) is not None


class PostStore:
    """Post persistence keyed by ``(feed_id, url)``."""

    def __init__(self, sessions: scoped_session) -> None:
        self._sessions = sessions

    def insert_post(
        self,
        feed_id: str,
        title: str,
        url: str,
        description: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> Post:
        """Insert one post inside a SAVEPOINT.

        A failed insert only rolls back its own savepoint, so an enclosing
        ingestion transaction can carry on with the next entry.
        """
        try:
            with transaction(self._sessions) as session:
                if _post_exists(session, feed_id, url):
                    raise DuplicateError(feed_id, url)
                post = Post(
                    feed_id=feed_id,
                    title=title or "",
                    url=url,
                    description=description or None,
                    published_at=to_naive_utc(published_at),
                )
                try:
                    with session.begin_nested():
                        session.add(post)
                except IntegrityError as exc:
                    # Another writer stored the same post after the check.
                    if _post_exists(session, feed_id, url):
                        raise DuplicateError(feed_id, url) from exc
                    raise
                return post
        except SQLAlchemyError as exc:
            raise StoreError("insert_post", exc) from exc

    def list_posts_for_user(self, user_id: str, *, limit: int = 10) -> List[Post]:
        """Newest posts of the feeds ``user_id`` follows."""
        stmt = (
            select(Post)
            .join(FeedFollow, FeedFollow.feed_id == Post.feed_id)
            .where(FeedFollow.user_id == user_id)
            .order_by(Post.published_at.desc().nulls_last(), Post.created_at.desc())
            .limit(limit)
        )
        try:
            with transaction(self._sessions) as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as exc:
            raise StoreError("list_posts_for_user", exc) from exc


__all__ = ["FeedRef", "FeedStore", "PostStore", "to_naive_utc"]
