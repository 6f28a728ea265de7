"""User and follow persistence used by the API."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from feedagg.errors import DuplicateError
from feedagg.models import Feed, FeedFollow, User


def create_user(session: Session, name: str) -> User:
    user = User(name=name)
    session.add(user)
    session.flush()
    return user


def get_user_by_api_key(session: Session, api_key: str) -> Optional[User]:
    if not api_key:
        return None
    return session.scalar(select(User).where(User.api_key == api_key))


def create_follow(session: Session, *, user_id: str, feed_id: str) -> FeedFollow:
    """Follow ``feed_id``; raises ``LookupError`` for an unknown feed."""
    if session.get(Feed, feed_id) is None:
        raise LookupError(feed_id)
    follow = FeedFollow(user_id=user_id, feed_id=feed_id)
    try:
        with session.begin_nested():
            session.add(follow)
    except IntegrityError as exc:
        raise DuplicateError(feed_id, feed_id) from exc
    return follow


def delete_follow(session: Session, *, user_id: str, follow_id: str) -> bool:
    follow = session.get(FeedFollow, follow_id)
    if follow is None or follow.user_id != user_id:
        return False
    session.delete(follow)
    return True


def list_follows(session: Session, user_id: str) -> List[FeedFollow]:
    stmt = (
        select(FeedFollow)
        .where(FeedFollow.user_id == user_id)
        .order_by(FeedFollow.created_at.asc(), FeedFollow.id.asc())
    )
    return list(session.scalars(stmt))


__all__ = [
    "create_follow",
    "create_user",
    "delete_follow",
    "get_user_by_api_key",
    "list_follows",
]
