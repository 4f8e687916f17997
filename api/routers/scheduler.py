"""
Scheduler status and manual trigger endpoints.

Endpoints:
    GET  /api/wind-status          → running flag + last fetch outcome
    POST /api/wind-refresh         → run the 24h history cycle now
    POST /api/wind-refresh-latest  → run the latest-only cycle now

Trigger endpoints answer 200 with ``success: false`` when every upstream
run failed; only cache backend faults produce a 500.
"""

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_scheduler
from api.scheduler import Scheduler
from api.schemas import WindRefreshResponse, WindStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Scheduler"])


@router.get("/api/wind-status", response_model=WindStatusResponse)
async def get_wind_status(scheduler: Scheduler = Depends(get_scheduler)):
    """Current scheduler status."""
    snapshot = await scheduler.get_status()
    return WindStatusResponse.from_snapshot(snapshot)


@router.post("/api/wind-refresh", response_model=WindRefreshResponse)
async def post_wind_refresh(scheduler: Scheduler = Depends(get_scheduler)):
    """Trigger the 24h historical fetch and wait for it to finish."""
    logger.info("Manual 24h fetch triggered")
    success = await scheduler.fetch_historical_24h()
    snapshot = await scheduler.get_status()
    return WindRefreshResponse(success=success, status=WindStatusResponse.from_snapshot(snapshot))


@router.post("/api/wind-refresh-latest", response_model=WindRefreshResponse)
async def post_wind_refresh_latest(scheduler: Scheduler = Depends(get_scheduler)):
    """Trigger the latest-forecast check and wait for it to finish."""
    logger.info("Manual latest fetch triggered")
    success = await scheduler.fetch_latest_forecast()
    snapshot = await scheduler.get_status()
    return WindRefreshResponse(success=success, status=WindStatusResponse.from_snapshot(snapshot))
