"""
GFS 0.5° provider backed by the NOMADS OpenDAP server.

Data are requested in ASCII form, one request per grid (two when the
requested box crosses the antimeridian from the west), parsed into a
:class:`ParsedGrid` and turned into wind or precipitation products.

Every download walks an ordered list of forecast runs and returns the
first run that produces a valid grid; that fallback loop is the only
retry layer for upstream requests.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

import httpx
import numpy as np

from windcache.data.forecast_runs import candidate_runs
from windcache.data.grid_stitch import needs_stitching, stitch_grids
from windcache.data.models import (
    GFS_RESOLUTION_DEG,
    GFS_SOURCE_LABEL,
    DownloadedPrecipitationData,
    DownloadedWindData,
    ForecastRunCandidate,
    ParsedGrid,
    WindMetadata,
    build_precipitation_points,
    build_wind_points,
)
from windcache.data.opendap_parser import (
    PRECIPITATION_VARIABLES,
    WIND_VARIABLES,
    parse_opendap_ascii,
    raise_for_error_document,
)
from windcache.data.png_codec import encode_wind_png
from windcache.errors import UpstreamError, UpstreamRequestFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_URL = "https://nomads.ncep.noaa.gov/dods/gfs_0p50"
DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "windcache/1.0"

# 0.5° dataset: lon axis 0..359.5 (720 values), time axis every 3 h
LAST_LON_INDEX = 719
TIME_STEP_HOURS = 3


@dataclass(frozen=True)
class GridBounds:
    lat_min: float = -90.0
    lat_max: float = 90.0
    lon_min: float = -180.0
    lon_max: float = 180.0


GLOBAL_BOUNDS = GridBounds()


def lat_index(lat: float) -> int:
    return int(math.floor((lat + 90.0) / GFS_RESOLUTION_DEG))


def lon_index(lon: float) -> int:
    return int(math.floor(lon / GFS_RESOLUTION_DEG))


def time_index(forecast_offset: int) -> int:
    return forecast_offset // TIME_STEP_HOURS


def build_dataset_url(base_url: str, run: ForecastRunCandidate) -> str:
    """``{base}/gfs{YYYYMMDD}/gfs_0p50_{HH}z``"""
    return f"{base_url.rstrip('/')}/gfs{run.date_str}/gfs_0p50_{run.hour_str}z"


def build_constraint(
    variables: Sequence[str],
    t: int,
    lat_range: tuple,
    lon_range: tuple,
) -> str:
    """
    ASCII constraint expression selecting each variable plus both axes, e.g.
    ``.ascii?ugrd10m[0:1:0][0:1:360][0:1:360],lat[0:1:360],lon[0:360]``.
    """
    la0, la1 = lat_range
    lo0, lo1 = lon_range
    selections = [f"{name}[{t}:1:{t}][{la0}:1:{la1}][{lo0}:1:{lo1}]" for name in variables]
    selections.append(f"lat[{la0}:1:{la1}]")
    selections.append(f"lon[{lo0}:{lo1}]")
    return ".ascii?" + ",".join(selections)


def wind_products(grid: ParsedGrid, date: str) -> DownloadedWindData:
    """Point list, PNG and metadata for a parsed u/v grid. CPU bound."""
    u_name, v_name = WIND_VARIABLES
    u = grid.planes[u_name]
    v = grid.planes[v_name]
    u_min, u_max = float(np.min(u)), float(np.max(u))
    v_min, v_max = float(np.min(v)), float(np.max(v))

    png = encode_wind_png(grid.width, grid.height, u, v, u_min, u_max, v_min, v_max)
    metadata = WindMetadata(
        source=GFS_SOURCE_LABEL,
        date=date,
        width=grid.width,
        height=grid.height,
        u_min=u_min,
        u_max=u_max,
        v_min=v_min,
        v_max=v_max,
    )
    return DownloadedWindData(
        png_buffer=png,
        metadata=metadata,
        wind_points=build_wind_points(grid, u_name, v_name),
    )


def precipitation_products(grid: ParsedGrid) -> DownloadedPrecipitationData:
    (rate_name,) = PRECIPITATION_VARIABLES
    return DownloadedPrecipitationData(
        precip_points=build_precipitation_points(grid, rate_name),
    )


def _short(url: str, limit: int = 150) -> str:
    return url if len(url) <= limit else url[:limit] + "..."


class GFSOpenDAPProvider:
    """
    Async client for GFS wind (ugrd10m/vgrd10m) and precipitation rate
    (pratesfc) on the 0.5° NOMADS OpenDAP dataset.

    Args:
        base_url: Dataset root, without the per-run path.
        timeout: Per-request timeout in seconds.
        user_agent: HTTP User-Agent header.
        client: Optional pre-built ``httpx.AsyncClient``; the provider only
            closes clients it created itself.
        clock: Returns "now" (UTC); used for run selection and metadata.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent},
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GFSOpenDAPProvider":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Single requests
    # ------------------------------------------------------------------

    async def _fetch_ascii(self, url: str, label: Optional[str] = None) -> str:
        """GET one ASCII response, raising an UpstreamError on any failure."""
        name = f"{label} data" if label else "Data"
        logger.info(f"Fetching {label + ': ' if label else ''}{_short(url)}")
        try:
            response = await self._client.get(url, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise UpstreamRequestFailed(f"{name} request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise UpstreamRequestFailed(f"{name} request failed: {e}") from e

        if not response.is_success:
            raise UpstreamRequestFailed(
                f"{name} request failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        body = response.text
        logger.info(f"Downloaded {len(body)} bytes of ASCII data")
        raise_for_error_document(body, label=label)
        return body

    async def fetch_grid(
        self,
        run: ForecastRunCandidate,
        forecast_offset: int,
        bounds: GridBounds,
        variables: Sequence[str],
    ) -> ParsedGrid:
        """Fetch and parse *variables* for one run, stitching across 0° if needed."""
        dataset_url = build_dataset_url(self.base_url, run)
        t = time_index(forecast_offset)
        lat_range = (lat_index(bounds.lat_min), lat_index(bounds.lat_max))
        logger.info(f"Grid indices: time={t}, lat={lat_range[0]}:{lat_range[1]}")

        if not needs_stitching(bounds.lon_min):
            lon_range = (lon_index(bounds.lon_min), lon_index(bounds.lon_max))
            url = dataset_url + build_constraint(variables, t, lat_range, lon_range)
            body = await self._fetch_ascii(url)
            return await asyncio.to_thread(parse_opendap_ascii, body, variables)

        west_range = (lon_index(360.0 + bounds.lon_min), LAST_LON_INDEX)
        east_range = (0, lon_index(bounds.lon_max))
        logger.info(
            f"Crossing 0°: west lon indices {west_range[0]}:{west_range[1]}, "
            f"east lon indices {east_range[0]}:{east_range[1]}"
        )

        west_body = await self._fetch_ascii(
            dataset_url + build_constraint(variables, t, lat_range, west_range), label="west"
        )
        west = await asyncio.to_thread(parse_opendap_ascii, west_body, variables)
        east_body = await self._fetch_ascii(
            dataset_url + build_constraint(variables, t, lat_range, east_range), label="east"
        )
        east = await asyncio.to_thread(parse_opendap_ascii, east_body, variables)
        return await asyncio.to_thread(stitch_grids, west, east)

    # ------------------------------------------------------------------
    # Per-run products
    # ------------------------------------------------------------------

    async def _wind_for_run(
        self, run: ForecastRunCandidate, forecast_offset: int, bounds: GridBounds
    ) -> DownloadedWindData:
        grid = await self.fetch_grid(run, forecast_offset, bounds, WIND_VARIABLES)
        return await asyncio.to_thread(wind_products, grid, self._clock().isoformat())

    async def _precipitation_for_run(
        self, run: ForecastRunCandidate, forecast_offset: int, bounds: GridBounds
    ) -> DownloadedPrecipitationData:
        grid = await self.fetch_grid(run, forecast_offset, bounds, PRECIPITATION_VARIABLES)
        return await asyncio.to_thread(precipitation_products, grid)

    # ------------------------------------------------------------------
    # Fallback loop
    # ------------------------------------------------------------------

    async def _first_available(
        self,
        kind: str,
        forecast_offset: int,
        run_age: int,
        attempt: Callable[[ForecastRunCandidate], Awaitable[T]],
    ) -> T:
        runs: List[ForecastRunCandidate] = candidate_runs(run_age, now=self._clock())
        last_error: Optional[UpstreamError] = None

        for run in runs:
            logger.info(
                f"Attempting to fetch {kind} for {run.name} f{forecast_offset:03d} via OpenDAP..."
            )
            try:
                result = await attempt(run)
            except UpstreamError as e:
                logger.error(f"Failed to fetch {kind} for {run.name}: {e}")
                last_error = e
                continue

            logger.info(f"Successfully fetched {kind} from {run.name}")
            result.run_name = run.name
            result.data_time = run.run_timestamp
            result.forecast_offset = forecast_offset
            return result

        if last_error is None:
            raise UpstreamRequestFailed(f"No forecast runs to try for {kind}")
        raise last_error

    async def download_wind_data(
        self,
        forecast_offset: int = 0,
        run_age: int = 0,
        bounds: GridBounds = GLOBAL_BOUNDS,
    ) -> DownloadedWindData:
        """
        Wind points, PNG raster and raster metadata from the first run that works.

        Raises:
            UpstreamError: The error from the last candidate when every run failed.
        """
        return await self._first_available(
            "wind data",
            forecast_offset,
            run_age,
            lambda run: self._wind_for_run(run, forecast_offset, bounds),
        )

    async def download_precipitation_data(
        self,
        forecast_offset: int = 0,
        run_age: int = 0,
        bounds: GridBounds = GLOBAL_BOUNDS,
    ) -> DownloadedPrecipitationData:
        """Precipitation rate points (mm/h); same run fallback as wind."""
        return await self._first_available(
            "precipitation data",
            forecast_offset,
            run_age,
            lambda run: self._precipitation_for_run(run, forecast_offset, bounds),
        )
