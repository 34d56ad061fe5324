"""Common schemas shared across endpoints."""

from typing import Any

from pydantic import BaseModel


class ListMeta(BaseModel):
    """Metadata for list responses."""

    total: int


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned for every failed request."""

    error: ErrorBody


class DataResponse(BaseModel):
    """Success envelope: ``{"data": ..., "meta": {...}}``."""

    data: Any
    meta: dict[str, Any] = {}


# Documented on every router; rest.main renders these bodies.
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Missing or invalid credentials"},
    403: {"model": ErrorResponse, "description": "Admin role required"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
    502: {"model": ErrorResponse, "description": "Warehouse request failed"},
}
