"""Schemas for refresh orchestration, status and staleness (/v1/refresh)."""

from datetime import datetime

from pydantic import BaseModel, Field


class OrchestrationResponse(BaseModel):
    """Result of POST /v1/refresh/{family} and /retry."""

    family: str
    configuration_id: int = Field(alias="configurationId")
    orchestration_id: str = Field(alias="orchestrationId")
    units_queued: int = Field(alias="unitsQueued", ge=0)
    duplicates_skipped: int = Field(alias="duplicatesSkipped", ge=0)
    aggregation_queued: bool = Field(alias="aggregationQueued")
    partitions: list[str] = Field(default_factory=list)
    finishes_by: datetime | None = Field(alias="finishesBy", default=None)

    model_config = {"populate_by_name": True}


class PartitionStatusItem(BaseModel):
    partition: str
    state: str
    attempts: int = 0
    last_error: str | None = Field(alias="lastError", default=None)
    run_at: datetime | None = Field(alias="runAt", default=None)
    cached: bool = False
    calculated_at: datetime | None = Field(alias="calculatedAt", default=None)

    model_config = {"populate_by_name": True}


class RefreshStatusResponse(BaseModel):
    """Per-partition completion/failure for GET /v1/refresh/{family}/status."""

    family: str
    configuration_id: int = Field(alias="configurationId")
    counts: dict[str, int]
    failed_partitions: list[str] = Field(alias="failedPartitions", default_factory=list)
    aggregation_state: str = Field(alias="aggregationState")
    partitions: list[PartitionStatusItem]

    model_config = {"populate_by_name": True}


class PartitionStalenessItem(BaseModel):
    partition: str
    verdict: str
    calculated_at: datetime | None = Field(alias="calculatedAt", default=None)
    age_seconds: float | None = Field(alias="ageSeconds", default=None)
    source_changed_at: datetime | None = Field(alias="sourceChangedAt", default=None)
    changes_since: dict[str, int] = Field(alias="changesSince", default_factory=dict)

    model_config = {"populate_by_name": True}


class StalenessResponse(BaseModel):
    """Freshness report for GET /v1/refresh/{family}/staleness."""

    family: str
    configuration_id: int = Field(alias="configurationId")
    max_age_hours: float = Field(alias="maxAgeHours")
    last_refresh: datetime | None = Field(alias="lastRefresh", default=None)
    stale_partitions: list[str] = Field(alias="stalePartitions", default_factory=list)
    recommendation: str
    partitions: list[PartitionStalenessItem]

    model_config = {"populate_by_name": True}
