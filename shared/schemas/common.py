"""Common schemas used across services."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Standard health check response."""

    status: str = "ok"
    cache: bool | None = None
    registry: bool | None = None


class ErrorResponse(BaseModel):
    """Error body rendered for every BucketError."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    message: str
    status_code: int = Field(alias="statusCode")
    timestamp: str
