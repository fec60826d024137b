"""Analytics API - cached feedback analytics snapshots.

Snapshots are cached per filter for ANALYTICS_CACHE_TTL seconds and
invalidated per tenant whenever a new response is processed.
"""

from fastapi import APIRouter, Query
from typing import Optional
import logging

from app.api.deps import Repository, Cache
from app.config import settings
from app.schemas.analytics import AnalyticsSnapshot, CacheInvalidationRequest, CacheInvalidationResponse
from app.services.cache_service import analytics_cache_key, analytics_tags
from app.services.feedback.metrics_aggregator import MetricsAggregator, parse_analytics_filter

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=AnalyticsSnapshot)
async def get_analytics(
    repository: Repository,
    cache: Cache,
    tenant_ids: list[str] = Query(default=[]),
    survey_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    """Analytics snapshot for one or more tenants, optionally narrowed to a survey and date range."""
    flt = parse_analytics_filter(tenant_ids, survey_id, start_date, end_date)
    aggregator = MetricsAggregator(repository)

    async def compute() -> dict:
        snapshot = await aggregator.compute(flt)
        return snapshot.model_dump(mode="json")

    return await cache.get_or_compute(
        analytics_cache_key(flt),
        compute,
        ttl=settings.ANALYTICS_CACHE_TTL,
        tags=analytics_tags(flt.tenant_ids),
    )


@router.post("/invalidate", response_model=CacheInvalidationResponse)
async def invalidate_analytics(cache: Cache, request: Optional[CacheInvalidationRequest] = None):
    """Force recomputation, e.g. after a manual data correction. Defaults to every analytics entry."""
    tag = (request.tag if request else None) or settings.ANALYTICS_CACHE_TAG
    invalidated = await cache.invalidate_tag(tag)
    return CacheInvalidationResponse(tag=tag, invalidated=invalidated)


@router.get("/cache-stats")
async def get_cache_stats(cache: Cache):
    """Hit/miss/computation counters for the aggregation cache."""
    return cache.get_stats()
