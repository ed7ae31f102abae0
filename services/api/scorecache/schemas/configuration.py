"""Schemas for scoring configuration administration (/v1/admin/configurations)."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ConfigurationCreate(BaseModel):
    """Request body for creating a draft configuration."""

    family: str
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category_weights: dict[str, Any] = Field(alias="categoryWeights")
    normalization_method: str = Field(alias="normalizationMethod", default="none")
    normalization_settings: dict[str, Any] = Field(alias="normalizationSettings", default_factory=dict)
    missing_data_strategies: dict[str, Any] = Field(alias="missingDataStrategies", default_factory=dict)

    model_config = {"populate_by_name": True}


class ConfigurationUpdate(BaseModel):
    """Partial update of a draft (or the changes for a new version)."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category_weights: dict[str, Any] | None = Field(alias="categoryWeights", default=None)
    normalization_method: str | None = Field(alias="normalizationMethod", default=None)
    normalization_settings: dict[str, Any] | None = Field(alias="normalizationSettings", default=None)
    missing_data_strategies: dict[str, Any] | None = Field(alias="missingDataStrategies", default=None)

    model_config = {"populate_by_name": True}

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True, by_alias=False)


class ConfigurationResponse(BaseModel):
    id: int
    version: int
    family: str
    name: str
    description: str | None = None
    category_weights: dict[str, Any] = Field(alias="categoryWeights")
    normalization_method: str = Field(alias="normalizationMethod")
    normalization_settings: dict[str, Any] = Field(alias="normalizationSettings")
    missing_data_strategies: dict[str, Any] = Field(alias="missingDataStrategies")
    is_active: bool = Field(alias="isActive")
    is_draft: bool = Field(alias="isDraft")
    deployed_at: datetime | None = Field(alias="deployedAt", default=None)
    created_at: datetime | None = Field(alias="createdAt", default=None)
    updated_at: datetime | None = Field(alias="updatedAt", default=None)

    model_config = {"populate_by_name": True, "from_attributes": True}


class ConfigurationList(BaseModel):
    configurations: list[ConfigurationResponse]


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class PurgeResponse(BaseModel):
    configuration_id: int = Field(alias="configurationId")
    partition: str | None = None
    deleted: int
    memory_dropped: int = Field(alias="memoryDropped")

    model_config = {"populate_by_name": True}


class SourceChangeRequest(BaseModel):
    """Change signal from an ingestion pipeline.

    Omit partitions to mark the change as affecting every partition.
    """

    domain: str
    partitions: list[str] | None = None
    entity_id: int | None = Field(alias="entityId", default=None)
    changed_at: datetime | None = Field(alias="changedAt", default=None)

    model_config = {"populate_by_name": True}


class SourceChangeResponse(BaseModel):
    recorded: int
    memory_dropped: int = Field(alias="memoryDropped")

    model_config = {"populate_by_name": True}


class ConfigurationAccuracyItem(BaseModel):
    configuration_id: int = Field(alias="configurationId")
    version: int
    name: str
    is_active: bool = Field(alias="isActive")
    aggregated: bool
    accuracy: float | None = None
    partition_accuracy: dict[str, float | None] = Field(alias="partitionAccuracy", default_factory=dict)
    calculated_at: datetime | None = Field(alias="calculatedAt", default=None)

    model_config = {"populate_by_name": True}


class ComparisonResponse(BaseModel):
    """Validation accuracy of several configurations side by side."""

    family: str
    configurations: list[ConfigurationAccuracyItem]
    best_overall: int | None = Field(alias="bestOverall", default=None)
    best_per_partition: dict[str, int | None] = Field(alias="bestPerPartition", default_factory=dict)

    model_config = {"populate_by_name": True}
