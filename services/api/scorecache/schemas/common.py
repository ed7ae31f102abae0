"""Error envelope shared by every endpoint."""

from typing import Any

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str  # CONFIGURATION_INVALID, NOT_FOUND or INTERNAL_ERROR
    message: str
    detail: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx response raised through a ScoreCacheError."""

    error: ErrorDetail
