from flask import Blueprint

from .feeds import create_feed, list_feeds
from .follows import create_follow, delete_follow, list_follows
from .health import err, readiness
from .posts import list_posts
from .users import create_user, get_current_user


api_bp = Blueprint("api", __name__)
api_bp.add_url_rule("/readiness", view_func=readiness)
api_bp.add_url_rule("/err", view_func=err)
api_bp.add_url_rule("/users", view_func=create_user, methods=["POST"])
api_bp.add_url_rule("/users", view_func=get_current_user, methods=["GET"])
api_bp.add_url_rule("/feeds", view_func=create_feed, methods=["POST"])
api_bp.add_url_rule("/feeds", view_func=list_feeds, methods=["GET"])
api_bp.add_url_rule("/feed_follows", view_func=create_follow, methods=["POST"])
api_bp.add_url_rule("/feed_follows", view_func=list_follows, methods=["GET"])
api_bp.add_url_rule(
    "/feed_follows/<feed_follow_id>", view_func=delete_follow, methods=["DELETE"]
)
api_bp.add_url_rule("/posts", view_func=list_posts)


__all__ = ["api_bp"]
