"""
FastAPI backend for the GFS wind/precipitation forecast cache.

Provides REST API endpoints for:
- Scheduler status and manual refresh triggers
- Cached global wind and precipitation snapshots (latest and historical)
- WebGL wind raster and its decoding metadata
- Health checks

Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from api.cache import CacheStore
from api.config import Settings, get_settings
from api.health import SERVICE_VERSION
from api.middleware import setup_middleware
from api.resilience import wait_for_cache
from api.routers import scheduler as scheduler_routes
from api.routers import system as system_routes
from api.routers import wind as wind_routes
from api.routers import windgl as windgl_routes
from api.scheduler import Scheduler
from windcache.data.opendap import GFSOpenDAPProvider
from windcache.errors import CacheBackendError

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Factory
# =============================================================================

@asynccontextmanager
async def lifespan(application: FastAPI):
    """Verify Redis, start the scheduler, and tear everything down on shutdown."""
    cfg: Settings = application.state.settings
    cache: CacheStore = application.state.cache
    scheduler: Scheduler = application.state.scheduler

    try:
        await wait_for_cache(cache, max_attempts=cfg.cache_connect_attempts)
    except CacheBackendError as e:
        logger.error(f"Redis unavailable at startup, serving degraded: {e}")

    if cfg.scheduler_enabled:
        scheduler.start_in_background()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    logger.info("Startup complete")
    try:
        yield
    finally:
        await scheduler.stop()
        for resource in application.state.owned_resources:
            await resource.close()
        logger.info("Shutdown complete")


def create_app(
    app_settings: Optional[Settings] = None,
    cache: Optional[CacheStore] = None,
    provider: Optional[GFSOpenDAPProvider] = None,
) -> FastAPI:
    """
    Application factory for the wind cache API.

    Args:
        app_settings: Settings to use (defaults to the environment).
        cache: Pre-built cache store; one is created from ``redis_url`` otherwise.
        provider: Pre-built upstream provider.

    Returns:
        FastAPI: Configured application instance
    """
    cfg = app_settings or get_settings()

    application = FastAPI(
        title="Wind Cache API",
        description="Global GFS wind and precipitation forecasts cached from NOAA NOMADS OpenDAP.",
        version=SERVICE_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    owned = []
    if cache is None:
        cache = CacheStore.from_url(
            cfg.redis_url,
            ttl_seconds=cfg.cache_ttl,
            max_payload_bytes=cfg.cache_max_payload_bytes,
            max_history=cfg.cache_max_history,
        )
        owned.append(cache)
    if provider is None:
        provider = GFSOpenDAPProvider(
            base_url=cfg.opendap_base_url,
            timeout=cfg.upstream_timeout,
            user_agent=cfg.upstream_user_agent,
        )
        owned.append(provider)

    application.state.settings = cfg
    application.state.cache = cache
    application.state.scheduler = Scheduler(
        cache,
        provider,
        max_history=cfg.cache_max_history,
        interval_seconds=cfg.scheduler_interval_seconds,
        fetch_delay_seconds=cfg.scheduler_fetch_delay_seconds,
    )
    application.state.owned_resources = owned

    setup_middleware(application, debug=cfg.debug)

    # CORS middleware - configured origins only
    application.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @application.exception_handler(CacheBackendError)
    async def cache_backend_error_handler(request: Request, exc: CacheBackendError):
        logger.error(f"Cache backend error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Cache backend unavailable"})

    application.include_router(system_routes.router)
    application.include_router(scheduler_routes.router)
    application.include_router(wind_routes.router)
    application.include_router(windgl_routes.router)

    return application


# Create the application
app = create_app(settings)


# ============================================================================
# Run Server
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level,
    )
