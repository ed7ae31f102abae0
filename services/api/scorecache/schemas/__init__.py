"""Pydantic schemas for API requests/responses."""

from scorecache.schemas.cache import CacheReadResponse, MemoryStatsResponse
from scorecache.schemas.common import ErrorDetail, ErrorResponse
from scorecache.schemas.configuration import (
    ComparisonResponse,
    ConfigurationAccuracyItem,
    ConfigurationCreate,
    ConfigurationList,
    ConfigurationResponse,
    ConfigurationUpdate,
    PurgeResponse,
    SourceChangeRequest,
    SourceChangeResponse,
    ValidationResult,
)
from scorecache.schemas.refresh import (
    OrchestrationResponse,
    PartitionStalenessItem,
    PartitionStatusItem,
    RefreshStatusResponse,
    StalenessResponse,
)

__all__ = [
    "CacheReadResponse",
    "ComparisonResponse",
    "ConfigurationAccuracyItem",
    "ConfigurationCreate",
    "ConfigurationList",
    "ConfigurationResponse",
    "ConfigurationUpdate",
    "ErrorDetail",
    "ErrorResponse",
    "MemoryStatsResponse",
    "OrchestrationResponse",
    "PartitionStalenessItem",
    "PartitionStatusItem",
    "PurgeResponse",
    "RefreshStatusResponse",
    "SourceChangeRequest",
    "SourceChangeResponse",
    "StalenessResponse",
    "ValidationResult",
]
