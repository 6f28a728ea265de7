from __future__ import annotations

from datetime import datetime
from typing import Optional

import pytest
from sqlalchemy import func, select

from feedagg.db import dispose_engines, get_session, get_session_registry
from feedagg.models import Feed, Post, User
from feedagg.services.stores import FeedRef, FeedStore, PostStore


@pytest.fixture()
def database_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'feedagg.db'}"
    yield url
    dispose_engines()


@pytest.fixture()
def registry(database_url):
    # Only hand the registry to stores; calling it directly would leave a
    # session open that every store operation on this thread then joins.
    return get_session_registry(database_url)


@pytest.fixture()
def feed_store(registry) -> FeedStore:
    return FeedStore(registry)


@pytest.fixture()
def post_store(registry) -> PostStore:
    return PostStore(registry)


@pytest.fixture()
def owner_id(database_url) -> str:
    session = get_session(database_url)
    try:
        user = User(name="owner")
        session.add(user)
        session.commit()
        return user.id
    finally:
        session.close()


@pytest.fixture()
def make_feed(database_url, owner_id):
    counter = {"n": 0}

    def _make(
        name: Optional[str] = None,
        *,
        url: Optional[str] = None,
        last_fetched_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> FeedRef:
        counter["n"] += 1
        name = name or f"feed-{counter['n']}"
        session = get_session(database_url)
        try:
            feed = Feed(
                name=name,
                url=url or f"https://example.com/{name}.xml",
                user_id=owner_id,
                last_fetched_at=last_fetched_at,
            )
            if created_at is not None:
                feed.created_at = created_at
            session.add(feed)
            session.commit()
            return FeedRef.from_model(feed)
        finally:
            session.close()

    return _make


@pytest.fixture()
def load_feed(database_url):
    def _load(feed_id: str) -> Feed:
        session = get_session(database_url)
        try:
            return session.get(Feed, feed_id)
        finally:
            session.close()

    return _load


@pytest.fixture()
def count_posts(database_url):
    def _count(feed_id: str) -> int:
        session = get_session(database_url)
        try:
            return session.scalar(select(func.count(Post.id)).where(Post.feed_id == feed_id))
        finally:
            session.close()

    return _count
