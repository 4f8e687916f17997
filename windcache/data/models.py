"""
Data containers for GFS forecast grids and the products derived from them.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import numpy as np

from windcache.errors import MalformedUpstreamResponse

GFS_SOURCE_LABEL = "NOAA GFS 0.5° via OpenDAP"
GFS_RESOLUTION_DEG = 0.5
WIND_PNG_TILE = "/api/windgl/wind.png"

# kg/m²/s -> mm/h
PRECIP_RATE_FACTOR = 3600.0


@dataclass(frozen=True)
class ForecastRunCandidate:
    """One GFS run that may have published data."""
    run_date: date
    run_hour: int  # 0, 6, 12 or 18
    run_timestamp: datetime
    hours_since_run: float

    @property
    def date_str(self) -> str:
        return self.run_date.strftime("%Y%m%d")

    @property
    def hour_str(self) -> str:
        return f"{self.run_hour:02d}"

    @property
    def name(self) -> str:
        return f"{self.date_str} {self.hour_str}Z"


@dataclass
class ParsedGrid:
    """
    Lat/lon axes plus one or more flat data planes in row-major (lat, lon) order.

    Every plane must hold exactly ``len(latitudes) * len(longitudes)`` values.
    """
    latitudes: np.ndarray
    longitudes: np.ndarray
    planes: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        self.latitudes = np.asarray(self.latitudes, dtype=np.float64)
        self.longitudes = np.asarray(self.longitudes, dtype=np.float64)
        self.planes = {
            name: np.asarray(values, dtype=np.float64) for name, values in self.planes.items()
        }
        self.validate()

    @property
    def width(self) -> int:
        return len(self.longitudes)

    @property
    def height(self) -> int:
        return len(self.latitudes)

    def validate(self) -> None:
        if self.height == 0 or self.width == 0:
            raise MalformedUpstreamResponse(
                f"Invalid parsed grid: lats={self.height}, lons={self.width}"
            )
        expected = self.height * self.width
        for name, values in self.planes.items():
            if len(values) != expected:
                raise MalformedUpstreamResponse(
                    f"Plane '{name}' has {len(values)} values, expected "
                    f"{self.height}x{self.width}={expected}"
                )

    def plane_2d(self, name: str) -> np.ndarray:
        """Plane reshaped to (height, width)."""
        return self.planes[name].reshape(self.height, self.width)

    def row(self, name: str, y: int) -> np.ndarray:
        start = y * self.width
        return self.planes[name][start:start + self.width]


@dataclass
class WindPoint:
    lat: float
    lon: float
    u: float
    v: float
    speed: float
    direction: float
    gusts: float = 0.0  # not published by GFS

    @classmethod
    def from_components(cls, lat: float, lon: float, u: float, v: float) -> "WindPoint":
        speed = math.sqrt(u * u + v * v)
        direction = (270.0 - math.atan2(v, u) * 180.0 / math.pi) % 360.0
        return cls(lat=lat, lon=lon, u=u, v=v, speed=speed, direction=direction)

    def to_dict(self) -> Dict[str, float]:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "u": self.u,
            "v": self.v,
            "speed": self.speed,
            "direction": self.direction,
            "gusts": self.gusts,
        }


@dataclass
class PrecipitationPoint:
    lat: float
    lon: float
    rate: float  # mm/h

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon, "rate": self.rate}


@dataclass
class WindMetadata:
    """Describes how the wind raster encodes u/v so a client can decode it."""
    source: str
    date: str
    width: int
    height: int
    u_min: float
    u_max: float
    v_min: float
    v_max: float
    tiles: List[str] = field(default_factory=lambda: [WIND_PNG_TILE])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "date": self.date,
            "width": self.width,
            "height": self.height,
            "uMin": self.u_min,
            "uMax": self.u_max,
            "vMin": self.v_min,
            "vMax": self.v_max,
            "tiles": list(self.tiles),
        }


@dataclass
class DownloadedWindData:
    png_buffer: bytes
    metadata: WindMetadata
    wind_points: List[WindPoint]
    run_name: str = ""
    data_time: Optional[datetime] = None
    forecast_offset: int = 0


@dataclass
class DownloadedPrecipitationData:
    precip_points: List[PrecipitationPoint]
    run_name: str = ""
    data_time: Optional[datetime] = None
    forecast_offset: int = 0


def build_wind_points(grid: ParsedGrid, u_name: str, v_name: str) -> List[WindPoint]:
    """Expand a wind grid into per-cell points, row by row."""
    u = grid.planes[u_name]
    v = grid.planes[v_name]
    lat_col = np.repeat(grid.latitudes, grid.width)
    lon_row = np.tile(grid.longitudes, grid.height)
    speed = np.sqrt(u * u + v * v)
    direction = np.mod(270.0 - np.degrees(np.arctan2(v, u)), 360.0)
    return [
        WindPoint(lat=la, lon=lo, u=uu, v=vv, speed=s, direction=d)
        for la, lo, uu, vv, s, d in zip(
            lat_col.tolist(), lon_row.tolist(), u.tolist(), v.tolist(),
            speed.tolist(), direction.tolist(),
        )
    ]


def build_precipitation_points(grid: ParsedGrid, rate_name: str) -> List[PrecipitationPoint]:
    """Expand a precipitation-rate grid into per-cell points in mm/h."""
    rate = grid.planes[rate_name] * PRECIP_RATE_FACTOR
    lat_col = np.repeat(grid.latitudes, grid.width)
    lon_row = np.tile(grid.longitudes, grid.height)
    return [
        PrecipitationPoint(lat=la, lon=lo, rate=r)
        for la, lo, r in zip(lat_col.tolist(), lon_row.tolist(), rate.tolist())
    ]
