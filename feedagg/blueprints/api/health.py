from pydantic import BaseModel

from .common import error_response


class HealthResponse(BaseModel):
    """Response model for readiness endpoint."""

    status: str = "ok"


def readiness() -> tuple[dict, int]:
    """Return application readiness status."""
    return HealthResponse().model_dump(), 200


def err():
    return error_response(500, "Internal Server Error")


__all__ = ["HealthResponse", "err", "readiness"]
