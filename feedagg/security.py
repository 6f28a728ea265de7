from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import Request, current_app, jsonify
from flask_login import UserMixin

from feedagg.db import get_session_registry, transaction
from feedagg.models import User as UserModel
from feedagg.services.accounts import get_user_by_api_key


@dataclass
class User(UserMixin):
    id: str
    name: str
    api_key: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, user: UserModel) -> "User":
        return cls(
            id=user.id,
            name=user.name,
            api_key=user.api_key,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


def parse_api_key(header: Optional[str]) -> Optional[str]:
    """Extract the key from an ``Authorization: ApiKey <key>`` header."""
    if not header:
        return None
    fields = header.split()
    if len(fields) != 2 or fields[0] != "ApiKey":
        return None
    return fields[1]


def load_user_from_request(request: Request) -> Optional[User]:
    api_key = parse_api_key(request.headers.get("Authorization"))
    if api_key is None:
        return None
    registry = get_session_registry(current_app.config.get("DATABASE_URL"))
    with transaction(registry) as session:
        user = get_user_by_api_key(session, api_key)
        return User.from_model(user) if user is not None else None


def unauthorized():
    return jsonify({"error": "Unauthorized"}), 401


__all__ = ["User", "load_user_from_request", "parse_api_key", "unauthorized"]
