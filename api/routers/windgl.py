"""
WebGL wind layer assets: the u/v raster and the metadata needed to decode it.

Endpoints:
    GET /api/windgl/metadata.json           → latest metadata (503 if none)
    GET /api/windgl/metadata.json/{index}   → metadata for a stored index (404 if none)
    GET /api/windgl/wind.png                → latest raster (503 if none)
    GET /api/windgl/wind.png/{index}        → raster for a stored index (404 if none)
"""

import logging

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse
from starlette.responses import Response

from api.cache import CacheStore
from api.dependencies import get_cache
from api.scheduler import WIND_METADATA_KEY, WIND_PNG_KEY
from api.schemas import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WindGL"])

CACHE_CONTROL = {"Cache-Control": "public, max-age=300"}
LATEST_RESPONSES = {503: {"model": ErrorResponse, "description": "Nothing cached yet"}}
INDEXED_RESPONSES = {404: {"model": ErrorResponse, "description": "No entry at this index"}}


@router.get("/api/windgl/metadata.json", responses=LATEST_RESPONSES)
async def get_windgl_metadata(cache: CacheStore = Depends(get_cache)):
    data = await cache.get_value(WIND_METADATA_KEY)
    if data is None:
        logger.warning("Wind metadata not found in cache")
        return JSONResponse(status_code=503, content={"error": "Wind metadata not yet available"})
    return JSONResponse(content=data, headers=CACHE_CONTROL)


@router.get("/api/windgl/metadata.json/{index}", responses=INDEXED_RESPONSES)
async def get_windgl_metadata_by_index(
    index: int = Path(..., ge=0),
    cache: CacheStore = Depends(get_cache),
):
    data = await cache.get_value(f"{WIND_METADATA_KEY}:{index}")
    if data is None:
        return JSONResponse(
            status_code=404, content={"error": f"Wind metadata not found at index {index}"}
        )
    return JSONResponse(content=data, headers=CACHE_CONTROL)


@router.get("/api/windgl/wind.png", responses=LATEST_RESPONSES)
async def get_windgl_png(cache: CacheStore = Depends(get_cache)):
    png = await cache.get_binary(WIND_PNG_KEY)
    if png is None:
        logger.warning("Wind PNG not found in cache")
        return JSONResponse(status_code=503, content={"error": "Wind PNG not yet available"})
    return Response(content=png, media_type="image/png", headers=CACHE_CONTROL)


@router.get("/api/windgl/wind.png/{index}", responses=INDEXED_RESPONSES)
async def get_windgl_png_by_index(
    index: int = Path(..., ge=0),
    cache: CacheStore = Depends(get_cache),
):
    png = await cache.get_binary_by_index(WIND_PNG_KEY, index)
    if png is None:
        return JSONResponse(
            status_code=404, content={"error": f"Wind PNG not found at index {index}"}
        )
    return Response(content=png, media_type="image/png", headers=CACHE_CONTROL)
