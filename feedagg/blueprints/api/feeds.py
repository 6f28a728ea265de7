from __future__ import annotations

import logging

from flask import jsonify
from flask_login import current_user, login_required

from feedagg.errors import DuplicateError, StoreError
from feedagg.schemas import CreateFeedResponse, FeedCreate, FeedOut, FollowOut
from feedagg.services import accounts
from feedagg.services.stores import FeedStore

from .common import RequestError, error_response, open_registry, parse_body

LOGGER = logging.getLogger(__name__)


@login_required
def create_feed():
    try:
        payload = parse_body(FeedCreate, decode_error="Unable to decode json")
    except RequestError as exc:
        return error_response(exc.status, exc.message)

    store = FeedStore(open_registry())
    try:
        # The creator follows the new feed; both rows commit together.
        with store.transaction() as session:
            feed = store.create_feed(name=payload.name, url=payload.url, user_id=current_user.id)
            follow = accounts.create_follow(session, user_id=current_user.id, feed_id=feed.id)
            body = CreateFeedResponse(
                feed=FeedOut.model_validate(feed),
                feed_follow=FollowOut.model_validate(follow),
            ).model_dump(mode="json")
    except DuplicateError:
        return error_response(409, "Feed already exists")
    except StoreError:
        LOGGER.exception("Saving feed %s failed", payload.url)
        return error_response(500, "Unable to save feed")
    return body, 201


def list_feeds():
    try:
        feeds = FeedStore(open_registry()).list_feeds()
    except StoreError:
        LOGGER.exception("Listing feeds failed")
        return error_response(500, "Unable to retrieve feeds")
    return jsonify([FeedOut.model_validate(feed).model_dump(mode="json") for feed in feeds]), 200


__all__ = ["create_feed", "list_feeds"]
