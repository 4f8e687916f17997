"""
Cached wind and precipitation point data.

Endpoints:
    GET /api/wind-global                    → latest wind snapshot (503 if none)
    GET /api/wind-global/{index}            → historical wind snapshot (404 if none)
    GET /api/wind-indices                   → wind history, newest data first
    GET /api/precipitation-global           → latest precipitation snapshot
    GET /api/precipitation-global/{index}   → historical precipitation snapshot
    GET /api/precipitation-indices          → precipitation history
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse

from api.cache import CacheStore
from api.dependencies import get_cache
from api.scheduler import PRECIPITATION_POINTS_KEY, WIND_POINTS_KEY
from api.schemas import ErrorResponse, IndexEntryModel, index_list

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Wind"])

LATEST_RESPONSES = {503: {"model": ErrorResponse, "description": "Nothing cached yet"}}
INDEXED_RESPONSES = {404: {"model": ErrorResponse, "description": "No entry at this index"}}


def _not_available(what: str) -> JSONResponse:
    logger.warning(f"{what} not found in cache")
    return JSONResponse(status_code=503, content={"error": f"{what} not yet available"})


def _not_found(what: str, index: int) -> JSONResponse:
    logger.warning(f"{what} not found at index {index}")
    return JSONResponse(status_code=404, content={"error": f"{what} not found at index {index}"})


@router.get("/api/wind-global", responses=LATEST_RESPONSES)
async def get_wind_global(cache: CacheStore = Depends(get_cache)):
    """Latest global wind snapshot."""
    data = await cache.get_value(WIND_POINTS_KEY)
    if data is None:
        return _not_available("Wind data")
    return JSONResponse(content=data)


@router.get("/api/wind-indices", response_model=List[IndexEntryModel])
async def get_wind_indices(cache: CacheStore = Depends(get_cache)):
    return index_list(await cache.list_indices(WIND_POINTS_KEY))


@router.get("/api/wind-global/{index}", responses=INDEXED_RESPONSES)
async def get_wind_global_by_index(
    index: int = Path(..., ge=0),
    cache: CacheStore = Depends(get_cache),
):
    """Wind snapshot stored under *index*."""
    data = await cache.get_value_by_index(WIND_POINTS_KEY, index)
    if data is None:
        return _not_found("Wind data", index)
    return JSONResponse(content=data)


@router.get("/api/precipitation-global", responses=LATEST_RESPONSES)
async def get_precipitation_global(cache: CacheStore = Depends(get_cache)):
    """Latest global precipitation snapshot."""
    data = await cache.get_value(PRECIPITATION_POINTS_KEY)
    if data is None:
        return _not_available("Precipitation data")
    return JSONResponse(content=data)


@router.get("/api/precipitation-indices", response_model=List[IndexEntryModel])
async def get_precipitation_indices(cache: CacheStore = Depends(get_cache)):
    return index_list(await cache.list_indices(PRECIPITATION_POINTS_KEY))


@router.get("/api/precipitation-global/{index}", responses=INDEXED_RESPONSES)
async def get_precipitation_global_by_index(
    index: int = Path(..., ge=0),
    cache: CacheStore = Depends(get_cache),
):
    data = await cache.get_value_by_index(PRECIPITATION_POINTS_KEY, index)
    if data is None:
        return _not_found("Precipitation data", index)
    return JSONResponse(content=data)
