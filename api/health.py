"""
Health check module for the wind cache service.

Liveness answers without touching dependencies; the full check pings
Redis and reports whether the scheduler is running.
"""
import logging
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass

from api.cache import CacheStore
from api.scheduler import Scheduler
from windcache.errors import CacheBackendError

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


class HealthStatus(Enum):
    """Health check status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""
    name: str
    status: HealthStatus
    latency_ms: Optional[float] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


async def check_redis_health(cache: CacheStore) -> ComponentHealth:
    """
    Check Redis connectivity.

    Returns:
        ComponentHealth with Redis status
    """
    try:
        latency_ms = await cache.ping_latency_ms()
    except CacheBackendError as e:
        logger.error(f"Redis health check failed: {e}")
        return ComponentHealth(
            name="redis",
            status=HealthStatus.UNHEALTHY,
            message=f"Connection failed: {type(e.__cause__ or e).__name__}",
        )

    return ComponentHealth(
        name="redis",
        status=HealthStatus.HEALTHY,
        latency_ms=round(latency_ms, 2),
        message="Redis connected",
    )


async def check_scheduler_health(scheduler: Optional[Scheduler]) -> ComponentHealth:
    """Scheduler is optional; a stopped or disabled one only degrades the service."""
    if scheduler is None:
        return ComponentHealth(
            name="scheduler",
            status=HealthStatus.DEGRADED,
            message="Scheduler disabled",
        )

    status = await scheduler.get_status()
    last_fetch = status.last_fetch
    details = {"last_fetch": last_fetch.to_dict() if last_fetch else None}

    if not status.running:
        return ComponentHealth(
            name="scheduler",
            status=HealthStatus.DEGRADED,
            message="Scheduler not running",
            details=details,
        )
    if last_fetch is not None and not last_fetch.success:
        return ComponentHealth(
            name="scheduler",
            status=HealthStatus.DEGRADED,
            message="Last fetch failed",
            details=details,
        )
    return ComponentHealth(
        name="scheduler",
        status=HealthStatus.HEALTHY,
        message="Scheduler running",
        details=details,
    )


async def perform_full_health_check(
    cache: CacheStore,
    scheduler: Optional[Scheduler],
) -> Dict[str, Any]:
    """
    Perform health check of all components.

    Returns:
        Dict with overall status and component details
    """
    start = datetime.now(timezone.utc)

    components = [
        await check_redis_health(cache),
        await check_scheduler_health(scheduler),
    ]

    # Determine overall status
    unhealthy_count = sum(1 for c in components if c.status == HealthStatus.UNHEALTHY)
    degraded_count = sum(1 for c in components if c.status == HealthStatus.DEGRADED)

    if unhealthy_count > 0:
        overall_status = HealthStatus.UNHEALTHY
    elif degraded_count > 0:
        overall_status = HealthStatus.DEGRADED
    else:
        overall_status = HealthStatus.HEALTHY

    total_time_ms = (datetime.now(timezone.utc) - start).total_seconds() * 1000

    return {
        "status": overall_status.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": SERVICE_VERSION,
        "check_duration_ms": round(total_time_ms, 2),
        "components": {
            c.name: {
                "status": c.status.value,
                "latency_ms": c.latency_ms,
                "message": c.message,
                **({"details": c.details} if c.details else {}),
            }
            for c in components
        },
    }


async def perform_liveness_check() -> Dict[str, Any]:
    """Liveness probe: the process is up."""
    return {"status": "ok"}
