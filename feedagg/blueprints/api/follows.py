from __future__ import annotations

import uuid

from flask import jsonify
from flask_login import current_user, login_required

from feedagg.db import transaction
from feedagg.errors import DuplicateError
from feedagg.schemas import FollowCreate, FollowOut
from feedagg.services import accounts

from .common import RequestError, error_response, open_registry, parse_body


def _valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (TypeError, ValueError):
        return False
    return True


@login_required
def create_follow():
    try:
        payload = parse_body(FollowCreate, decode_error="Unable to decode json")
    except RequestError:
        return error_response(400, "Invalid feed ID")
    if not _valid_uuid(payload.feed_id):
        return error_response(400, "Invalid feed ID")
    try:
        with transaction(open_registry()) as session:
            follow = accounts.create_follow(session, user_id=current_user.id, feed_id=payload.feed_id)
            body = FollowOut.model_validate(follow).model_dump(mode="json")
    except LookupError:
        return error_response(404, "Feed not found")
    except DuplicateError:
        return error_response(409, "Already following feed")
    return body, 201


@login_required
def delete_follow(feed_follow_id: str):
    if not _valid_uuid(feed_follow_id):
        return error_response(400, "Bad path")
    with transaction(open_registry()) as session:
        deleted = accounts.delete_follow(session, user_id=current_user.id, follow_id=feed_follow_id)
    if not deleted:
        return error_response(404, "Feed follow not found")
    return "", 204


@login_required
def list_follows():
    with transaction(open_registry()) as session:
        follows = accounts.list_follows(session, current_user.id)
        body = [FollowOut.model_validate(follow).model_dump(mode="json") for follow in follows]
    return jsonify(body), 200


__all__ = ["create_follow", "delete_follow", "list_follows"]
