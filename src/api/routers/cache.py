"""GET /cache/stats, POST /cache/clear -- aggregation cache administration."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.insights.service import InsightsService, get_service

router = APIRouter()


class CacheStatsResponse(BaseModel):
    size: int
    max_size: int
    ttl_seconds: float
    hits: int
    misses: int
    collapsed: int
    hit_rate: float


@router.get("/stats", response_model=CacheStatsResponse)
def cache_stats_endpoint(service: InsightsService = Depends(get_service)):
    """Return aggregation cache statistics."""
    return CacheStatsResponse(**service.cache_stats())


@router.post("/clear")
def cache_clear_endpoint(service: InsightsService = Depends(get_service)):
    """Flush the aggregation cache."""
    return {"cleared": service.clear_cache()}
