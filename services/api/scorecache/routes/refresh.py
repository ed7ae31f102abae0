"""Refresh orchestration endpoints.

POST /v1/refresh/{family}            - Queue a spaced recomputation sweep
POST /v1/refresh/{family}/retry      - Re-queue missing/failed partitions only
GET  /v1/refresh/{family}/status     - Per-partition job state
GET  /v1/refresh/{family}/staleness  - Per-partition freshness report
"""

from fastapi import APIRouter, Query

from scorecache.schemas import (
    OrchestrationResponse,
    PartitionStalenessItem,
    PartitionStatusItem,
    RefreshStatusResponse,
    StalenessResponse,
)
from scorecache.services.configuration import resolve_configuration_id
from scorecache.services.families import get_family
from scorecache.services.orchestrator import (
    OrchestrationResult,
    orchestrate,
    refresh_status,
    retry_failed,
)
from scorecache.services.staleness import staleness_report
from scorecache.stores.postgres import get_session

router = APIRouter()

ConfigurationQuery = Query(
    default=None,
    ge=1,
    description="Scoring configuration id (defaults to the family's active configuration)",
)


async def _configuration_for(family: str, configuration: int | None) -> int:
    get_family(family)
    async with get_session() as session:
        return await resolve_configuration_id(session, family, configuration)


def _orchestration_response(result: OrchestrationResult) -> OrchestrationResponse:
    return OrchestrationResponse(
        family=result.family,
        configuration_id=result.configuration_id,
        orchestration_id=result.orchestration_id,
        units_queued=result.units_queued,
        duplicates_skipped=result.duplicates_skipped,
        aggregation_queued=result.aggregation_queued,
        partitions=result.partitions,
        finishes_by=result.finishes_by,
    )


@router.post("/{family}", response_model=OrchestrationResponse, status_code=202, name="trigger_refresh")
async def trigger_refresh(family: str, configuration: int | None = ConfigurationQuery) -> OrchestrationResponse:
    """Queue one unit per partition plus a trailing aggregation job."""
    configuration_id = await _configuration_for(family, configuration)
    return _orchestration_response(await orchestrate(family, configuration_id))


@router.post("/{family}/retry", response_model=OrchestrationResponse, status_code=202)
async def retry_refresh(family: str, configuration: int | None = ConfigurationQuery) -> OrchestrationResponse:
    """Re-queue partitions with no cache entry or a failed latest job."""
    configuration_id = await _configuration_for(family, configuration)
    return _orchestration_response(await retry_failed(family, configuration_id))


@router.get("/{family}/status", response_model=RefreshStatusResponse)
async def get_refresh_status(family: str, configuration: int | None = ConfigurationQuery) -> RefreshStatusResponse:
    configuration_id = await _configuration_for(family, configuration)
    status = await refresh_status(family, configuration_id)
    return RefreshStatusResponse(
        family=status.family,
        configuration_id=status.configuration_id,
        counts=status.counts,
        failed_partitions=status.failed_partitions,
        aggregation_state=status.aggregation_state,
        partitions=[
            PartitionStatusItem(
                partition=p.partition_key,
                state=p.state,
                attempts=p.attempts,
                last_error=p.last_error,
                run_at=p.run_at,
                cached=p.cached,
                calculated_at=p.calculated_at,
            )
            for p in status.partitions
        ],
    )


@router.get("/{family}/staleness", response_model=StalenessResponse)
async def get_staleness(family: str, configuration: int | None = ConfigurationQuery) -> StalenessResponse:
    fam = get_family(family)
    async with get_session() as session:
        configuration_id = await resolve_configuration_id(session, fam.name, configuration)
        report = await staleness_report(session, fam, configuration_id)
    return StalenessResponse(
        family=report.family,
        configuration_id=report.configuration_id,
        max_age_hours=report.max_age_hours,
        last_refresh=report.last_refresh,
        stale_partitions=report.stale_partitions,
        recommendation=report.recommendation,
        partitions=[
            PartitionStalenessItem(
                partition=p.partition_key,
                verdict=p.verdict.value,
                calculated_at=p.calculated_at,
                age_seconds=p.age_seconds,
                source_changed_at=p.source_changed_at,
                changes_since=p.changes_since,
            )
            for p in report.partitions
        ],
    )
