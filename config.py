import os
from typing import Callable, Optional, TypeVar

_Number = TypeVar("_Number", int, float)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read an environment variable returning ``default`` when unset or empty."""

    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Return a boolean flag; unrecognised values keep ``default``."""

    value = _get_env(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def _get_positive_env(name: str, default: _Number, cast: Callable[[str], _Number]) -> _Number:
    """Parse a strictly positive number, falling back to ``default``."""

    value = _get_env(name)
    if value is None:
        return default
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _get_int_env(name: str, default: int) -> int:
    return _get_positive_env(name, default, int)


def _get_float_env(name: str, default: float) -> float:
    return _get_positive_env(name, default, float)


class Config:
    SECRET_KEY = _get_env("SECRET_KEY", "change-me")
    DATABASE_URL = _get_env("DATABASE_URL", "sqlite:///feedagg.db")
    LOG_LEVEL = _get_env("LOG_LEVEL", "INFO")
    SCHEDULER_MAX_WORKERS = _get_int_env("SCHEDULER_MAX_WORKERS", 4)

    # Ingestion pipeline
    FEED_FETCH_ENABLED = _get_bool_env("FEED_FETCH_ENABLED", True)
    FEED_BATCH_SIZE = _get_int_env("FEED_BATCH_SIZE", 10)
    FEED_FETCH_INTERVAL = _get_float_env("FEED_FETCH_INTERVAL", 60.0)
    FEED_FETCH_TIMEOUT = _get_float_env("FEED_FETCH_TIMEOUT", 10.0)
    FEED_MAX_BYTES = _get_int_env("FEED_MAX_BYTES", 5 * 1024 * 1024)

    # API
    POSTS_PAGE_LIMIT = _get_int_env("POSTS_PAGE_LIMIT", 10)
