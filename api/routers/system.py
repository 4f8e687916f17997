"""
System / health API router.

Handles the root endpoint, the liveness probe and the dependency health check.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from api.cache import CacheStore
from api.dependencies import get_cache, get_optional_scheduler
from api.health import SERVICE_VERSION, perform_full_health_check, perform_liveness_check
from api.middleware import get_request_id
from api.scheduler import Scheduler

router = APIRouter(tags=["System"])

logger = logging.getLogger(__name__)


@router.get("/")
async def root():
    """
    API root endpoint.

    Returns basic API information and available endpoints.
    """
    return {
        "name": "Wind Cache API",
        "version": SERVICE_VERSION,
        "status": "operational",
        "docs": "/api/docs",
        "endpoints": {
            "health": "/api/health",
            "status": "/api/wind-status",
            "wind": "/api/wind-global, /api/wind-indices",
            "precipitation": "/api/precipitation-global, /api/precipitation-indices",
            "windgl": "/api/windgl/metadata.json, /api/windgl/wind.png",
        },
    }


@router.get("/health")
async def liveness_check():
    """Liveness probe; never touches Redis."""
    return await perform_liveness_check()


@router.get("/api/health")
async def health_check(
    cache: CacheStore = Depends(get_cache),
    scheduler: Optional[Scheduler] = Depends(get_optional_scheduler),
):
    """
    Health check for load balancers and orchestrators.

    Returns:
        - status: Overall health status (healthy/degraded/unhealthy)
        - timestamp: Current UTC timestamp
        - version: API version
        - components: Redis (with ping latency) and scheduler
    """
    result = await perform_full_health_check(cache, scheduler)
    result["request_id"] = get_request_id()
    return result
