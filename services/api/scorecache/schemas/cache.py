"""Schemas for cache reads (/v1/cache)."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CacheReadResponse(BaseModel):
    """Response payload for GET /v1/cache/{family}/{partition}.

    status is fresh | stale | missing. A missing result carries refreshUrl,
    the manual refresh action for the family.
    """

    family: str
    partition: str
    configuration_id: int = Field(alias="configurationId")
    status: str
    tier: str | None = None
    payload: dict[str, Any] | None = None
    statistics: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    calculated_at: datetime | None = Field(alias="calculatedAt", default=None)
    refresh_url: str | None = Field(alias="refreshUrl", default=None)

    model_config = {"populate_by_name": True}


class MemoryStatsResponse(BaseModel):
    """Memory tier statistics for this API process."""

    size: int
    max_size: int = Field(alias="maxSize")
    ttl_seconds: float = Field(alias="ttlSeconds")
    hits: int
    misses: int
    hit_rate: float = Field(alias="hitRate")

    model_config = {"populate_by_name": True}
