"""Admin endpoints for scoring configurations and cache management.

These endpoints are intended for operators. In production, put them behind
authentication (API key or admin token).
"""

import logging

from fastapi import APIRouter, HTTPException, Query

from scorecache.models import ScoringConfiguration
from scorecache.schemas import (
    ComparisonResponse,
    ConfigurationAccuracyItem,
    ConfigurationCreate,
    ConfigurationList,
    ConfigurationResponse,
    ConfigurationUpdate,
    MemoryStatsResponse,
    PurgeResponse,
    SourceChangeRequest,
    SourceChangeResponse,
    ValidationResult,
)
from scorecache.services import configuration as configurations
from scorecache.services import durable_cache
from scorecache.services.aggregation import compare_configurations
from scorecache.services.cache_reader import get_cache_reader
from scorecache.services.families import FAMILIES, get_family
from scorecache.services.source_data import SOURCE_DOMAINS, record_source_change
from scorecache.stores.postgres import get_session

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def _to_response(config: ScoringConfiguration) -> ConfigurationResponse:
    return ConfigurationResponse(
        id=config.id,
        version=config.version,
        family=config.family,
        name=config.name,
        description=config.description,
        category_weights=config.category_weights or {},
        normalization_method=config.normalization_method,
        normalization_settings=config.normalization_settings or {},
        missing_data_strategies=config.missing_data_strategies or {},
        is_active=config.is_active,
        is_draft=config.is_draft,
        deployed_at=config.deployed_at,
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


# ============================================================
# Configurations
# ============================================================


@router.get("/configurations", response_model=ConfigurationList)
async def list_configurations(
    family: str | None = Query(default=None, description="Filter by computation family"),
    include_drafts: bool = Query(default=True, alias="includeDrafts"),
) -> ConfigurationList:
    async with get_session() as session:
        rows = await configurations.list_configurations(session, family, include_drafts)
        return ConfigurationList(configurations=[_to_response(c) for c in rows])


@router.post("/configurations", response_model=ConfigurationResponse, status_code=201)
async def create_configuration(request: ConfigurationCreate) -> ConfigurationResponse:
    """Create a draft configuration. Invalid values are rejected, never coerced."""
    async with get_session() as session:
        config = await configurations.create_configuration(
            session,
            family=request.family,
            name=request.name,
            description=request.description,
            category_weights=request.category_weights,
            normalization_method=request.normalization_method,
            normalization_settings=request.normalization_settings,
            missing_data_strategies=request.missing_data_strategies,
        )
        return _to_response(config)


@router.get("/configurations/{configuration_id}", response_model=ConfigurationResponse)
async def get_configuration(configuration_id: int) -> ConfigurationResponse:
    async with get_session() as session:
        return _to_response(await configurations.get_configuration(session, configuration_id))


@router.patch("/configurations/{configuration_id}", response_model=ConfigurationResponse)
async def update_configuration(configuration_id: int, request: ConfigurationUpdate) -> ConfigurationResponse:
    """Edit a draft. Activated configurations change through /versions."""
    async with get_session() as session:
        config = await configurations.update_configuration(session, configuration_id, request.changes())
        return _to_response(config)


@router.post("/configurations/{configuration_id}/validate", response_model=ValidationResult)
async def validate_configuration(configuration_id: int) -> ValidationResult:
    async with get_session() as session:
        config = await configurations.get_configuration(session, configuration_id)
        errors = configurations.validate_configuration(config)
    return ValidationResult(valid=not errors, errors=errors)


@router.post("/configurations/{configuration_id}/activate", response_model=ConfigurationResponse)
async def activate_configuration(configuration_id: int) -> ConfigurationResponse:
    """Deploy as the family's single active configuration.

    A new configuration has no cache entries yet; reads report missing until
    a refresh for it completes.
    """
    async with get_session() as session:
        config = await configurations.activate_configuration(session, configuration_id)
        return _to_response(config)


@router.post("/configurations/{configuration_id}/deactivate", response_model=ConfigurationResponse)
async def deactivate_configuration(configuration_id: int) -> ConfigurationResponse:
    async with get_session() as session:
        config = await configurations.deactivate_configuration(session, configuration_id)
        return _to_response(config)


@router.post(
    "/configurations/{configuration_id}/versions",
    response_model=ConfigurationResponse,
    status_code=201,
)
async def create_version(configuration_id: int, request: ConfigurationUpdate) -> ConfigurationResponse:
    """Copy a configuration into a new draft version with the given changes."""
    async with get_session() as session:
        config = await configurations.new_version_from(session, configuration_id, request.changes())
        return _to_response(config)


# ============================================================
# Cache management
# ============================================================


@router.delete("/cache/{configuration_id}", response_model=PurgeResponse)
async def purge_cache(
    configuration_id: int,
    partition: str | None = Query(default=None, description="Only purge this partition"),
) -> PurgeResponse:
    """Administrative purge: the only path that deletes durable cache rows."""
    async with get_session() as session:
        await configurations.get_configuration(session, configuration_id)
        deleted = await durable_cache.purge_entries(session, configuration_id, partition)
    dropped = get_cache_reader().invalidate(partition_key=partition, configuration_id=configuration_id)
    return PurgeResponse(
        configuration_id=configuration_id,
        partition=partition,
        deleted=deleted,
        memory_dropped=dropped,
    )


@router.get("/cache/stats", response_model=MemoryStatsResponse)
async def memory_cache_stats() -> MemoryStatsResponse:
    """Memory tier size and hit rate for this API process."""
    return MemoryStatsResponse(**get_cache_reader().memory.stats())


@router.post("/source-changes", response_model=SourceChangeResponse, status_code=201)
async def post_source_change(request: SourceChangeRequest) -> SourceChangeResponse:
    """Record a source-data change signal (normally sent by ingestion pipelines)."""
    if request.domain not in SOURCE_DOMAINS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported source domain: {request.domain}. Supported: {list(SOURCE_DOMAINS)}",
        )
    partitions: list[str | None] = list(request.partitions) if request.partitions else [None]

    async with get_session() as session:
        recorded = await record_source_change(
            session,
            request.domain,
            partition_keys=partitions,
            entity_id=request.entity_id,
            changed_at=request.changed_at,
        )

    reader = get_cache_reader()
    if request.partitions:
        dropped = sum(reader.invalidate(partition_key=key) for key in request.partitions)
    else:
        dropped = reader.invalidate()
    logger.info(f"[admin] source change domain={request.domain} partitions={request.partitions or 'all'}")
    return SourceChangeResponse(recorded=recorded, memory_dropped=dropped)


@router.get("/families")
async def list_families() -> dict:
    """Registered computation families and their partitions."""
    return {
        "families": [
            {
                "name": f.name,
                "kind": f.kind.value,
                "partitions": list(f.partitions),
                "rankingLimit": f.ranking_limit,
                "description": f.description,
            }
            for f in FAMILIES.values()
        ]
    }


@router.get("/families/{family}")
async def get_family_detail(family: str) -> dict:
    fam = get_family(family)
    return {"name": fam.name, "kind": fam.kind.value, "partitions": list(fam.partitions)}


@router.get("/families/{family}/comparison", response_model=ComparisonResponse)
async def compare_family_configurations(
    family: str,
    configuration: list[int] | None = Query(
        default=None,
        description="Configurations to compare (defaults to every activated configuration)",
    ),
) -> ComparisonResponse:
    """Validation accuracy per configuration, read from stored aggregates."""
    comparison = await compare_configurations(family, configuration)
    best = comparison.best_overall
    return ComparisonResponse(
        family=comparison.family,
        configurations=[
            ConfigurationAccuracyItem(
                configuration_id=c.configuration_id,
                version=c.version,
                name=c.name,
                is_active=c.is_active,
                aggregated=c.aggregated,
                accuracy=c.accuracy,
                partition_accuracy=c.partition_accuracy,
                calculated_at=c.calculated_at,
            )
            for c in comparison.configurations
        ],
        best_overall=best.configuration_id if best else None,
        best_per_partition=comparison.best_per_partition,
    )
