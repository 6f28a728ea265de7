from __future__ import annotations

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from feedagg.errors import StoreError
from feedagg.schemas import PostOut
from feedagg.services.stores import PostStore

from .common import error_response, open_registry, parse_limit


@login_required
def list_posts():
    limit = parse_limit(request.args.get("limit"), int(current_app.config.get("POSTS_PAGE_LIMIT", 10)))
    try:
        posts = PostStore(open_registry()).list_posts_for_user(current_user.id, limit=limit)
    except StoreError:
        return error_response(500, "There was a problem getting the user's posts")
    return jsonify([PostOut.model_validate(post).model_dump(mode="json") for post in posts]), 200


__all__ = ["list_posts"]
