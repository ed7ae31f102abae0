"""Cache read endpoints.

GET /v1/cache/{family}/{partition} - Two-tier read; never computes in production.

Routers are thin: call services for business logic.
"""

from fastapi import APIRouter, Path, Query, Request

from scorecache.schemas import CacheReadResponse
from scorecache.services.cache_reader import get_cache_reader

router = APIRouter()


@router.get("/{family}/{partition}", response_model=CacheReadResponse)
async def read_partition(
    request: Request,
    family: str = Path(description="Computation family", examples=["decades"]),
    partition: str = Path(description="Partition key within the family", examples=["1990"]),
    configuration: int | None = Query(
        default=None,
        ge=1,
        description="Scoring configuration id (defaults to the family's active configuration)",
    ),
    operator: bool = Query(
        default=False,
        description="Operator view: always checks staleness against source changes",
    ),
) -> CacheReadResponse:
    """Read one partition result.

    Returns 200 for fresh, stale and missing results. A missing result is the
    "not yet available" state and carries refreshUrl for a manual refresh.
    """
    result = await get_cache_reader().read(family, partition, configuration, operator=operator)

    refresh_url = None
    if result.is_missing:
        refresh_url = str(
            request.url_for("trigger_refresh", family=result.family).include_query_params(
                configuration=result.configuration_id
            )
        )

    return CacheReadResponse(
        family=result.family,
        partition=result.partition_key,
        configuration_id=result.configuration_id,
        status=result.status.value,
        tier=result.tier.value if result.tier else None,
        payload=result.payload,
        statistics=result.statistics,
        metadata=result.metadata,
        calculated_at=result.calculated_at,
        refresh_url=refresh_url,
    )
