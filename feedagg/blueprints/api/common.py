from __future__ import annotations

from typing import Any, Optional

from flask import current_app, jsonify, request
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import scoped_session

from feedagg.db import get_session_registry


class RequestError(Exception):
    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


def open_registry() -> scoped_session:
    return get_session_registry(current_app.config.get("DATABASE_URL"))


def error_response(status: int, message: str):
    return jsonify({"error": message}), status


def parse_body(model: type[BaseModel], *, decode_error: str = "Could not decode json request") -> Any:
    payload = request.get_json(silent=True)
    if payload is None:
        raise RequestError(decode_error)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid request")
        raise RequestError(f"{field}: {message}" if field else message) from exc


def parse_limit(raw: Optional[str], default: int, *, maximum: int = 100) -> int:
    try:
        limit = int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        limit = default
    return max(1, min(limit, maximum))
