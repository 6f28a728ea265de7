from __future__ import annotations

from flask_login import current_user, login_required

from feedagg.db import transaction
from feedagg.schemas import UserCreate, UserOut
from feedagg.services import accounts

from .common import RequestError, error_response, open_registry, parse_body


def create_user():
    try:
        payload = parse_body(UserCreate)
    except RequestError as exc:
        return error_response(exc.status, exc.message)
    with transaction(open_registry()) as session:
        user = accounts.create_user(session, payload.name)
        body = UserOut.model_validate(user).model_dump(mode="json")
    return body, 201


@login_required
def get_current_user():
    return UserOut.model_validate(current_user._get_current_object()).model_dump(mode="json"), 200


__all__ = ["create_user", "get_current_user"]
