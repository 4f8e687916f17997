"""
Shared pytest fixtures for the wind cache tests.

Redis is replaced by an in-memory async double and the upstream provider
by a stub that returns a tiny fixed grid, so no test touches the network.
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

# ---------------------------------------------------------------------------
# Section 1: Environment setup (before ANY api.* imports)
# ---------------------------------------------------------------------------
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "warning")

from api.cache import CacheStore  # noqa: E402
from api.config import Settings  # noqa: E402
from api.main import create_app  # noqa: E402
from api.scheduler import Scheduler  # noqa: E402
from windcache.data.models import (  # noqa: E402
    GFS_SOURCE_LABEL,
    DownloadedPrecipitationData,
    DownloadedWindData,
    PrecipitationPoint,
    WindMetadata,
    WindPoint,
)
from windcache.data.png_codec import encode_wind_png  # noqa: E402
from windcache.errors import UpstreamRequestFailed  # noqa: E402

# Wednesday 21 Jan 2026, 10:30 UTC: the 00Z run is published, 06Z is not
FIXED_NOW = datetime(2026, 1, 21, 10, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Section 2: Test doubles
# ---------------------------------------------------------------------------

class InMemoryRedis:
    """The subset of ``redis.asyncio.Redis`` used by CacheStore (decoded mode)."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True


class StubProvider:
    """Upstream provider returning a 2x1 grid; records every call."""

    def __init__(self):
        self.fail_wind = False
        self.fail_precipitation = False
        self.wind_calls: List[tuple] = []
        self.precipitation_calls: List[tuple] = []
        self.closed = False
        self.png = encode_wind_png(2, 1, [-4.0, 6.0], [2.0, -3.0], -4.0, 6.0, -3.0, 2.0)

    async def download_wind_data(self, forecast_offset=0, run_age=0, bounds=None):
        self.wind_calls.append((forecast_offset, run_age))
        if self.fail_wind:
            raise UpstreamRequestFailed("Data request failed: HTTP 503", status_code=503)
        return DownloadedWindData(
            png_buffer=self.png,
            metadata=WindMetadata(
                source=GFS_SOURCE_LABEL,
                date=FIXED_NOW.isoformat(),
                width=2,
                height=1,
                u_min=-4.0,
                u_max=6.0,
                v_min=-3.0,
                v_max=2.0,
            ),
            wind_points=[
                WindPoint.from_components(45.0, -0.5, -4.0, 2.0),
                WindPoint.from_components(45.0, 0.0, 6.0, -3.0),
            ],
            run_name="20260121 00Z",
            data_time=datetime(2026, 1, 21, 0, tzinfo=timezone.utc),
            forecast_offset=forecast_offset,
        )

    async def download_precipitation_data(self, forecast_offset=0, run_age=0, bounds=None):
        self.precipitation_calls.append((forecast_offset, run_age))
        if self.fail_precipitation:
            raise UpstreamRequestFailed("Data request timed out after 30.0s")
        return DownloadedPrecipitationData(
            precip_points=[
                PrecipitationPoint(lat=45.0, lon=-0.5, rate=0.0),
                PrecipitationPoint(lat=45.0, lon=0.0, rate=1.8),
            ],
            run_name="20260121 00Z",
            data_time=datetime(2026, 1, 21, 0, tzinfo=timezone.utc),
            forecast_offset=forecast_offset,
        )

    async def close(self):
        self.closed = True


def build_opendap_ascii(lats, lons, planes):
    """
    Render an OpenDAP ``.ascii`` body.

    *planes* maps a variable name to its rows (one list per latitude).
    Each variable is followed by its own time/lat/lon map vectors, as
    NOMADS does.
    """
    lines = []
    for name, rows in planes.items():
        lines.append(f"{name}, [1][{len(lats)}][{len(lons)}]")
        for y, row in enumerate(rows):
            lines.append(f"[0][{y}], " + ", ".join(str(float(v)) for v in row))
        lines.append("")
        lines.append("time, [1]")
        lines.append("739637.0")
        lines.append(f"lat, [{len(lats)}]")
        lines.append(", ".join(str(float(v)) for v in lats))
        lines.append(f"lon, [{len(lons)}]")
        lines.append(", ".join(str(float(v)) for v in lons))
        lines.append("")
    return "\n".join(lines)


class LoopTicker:
    """
    Background coroutine counting event loop turns while the block runs.

    A block that holds the loop leaves ``ticks`` near zero.
    """

    def __init__(self, period: float = 0.01):
        self.period = period
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    async def _tick(self):
        while True:
            await asyncio.sleep(self.period)
            self.ticks += 1

    async def __aenter__(self):
        self._task = asyncio.create_task(self._tick())
        return self

    async def __aexit__(self, *exc_info):
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


# ---------------------------------------------------------------------------
# Section 3: Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def opendap_ascii():
    return build_opendap_ascii


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def cache_store(fake_redis) -> CacheStore:
    return CacheStore(fake_redis, ttl_seconds=3600, max_history=20)


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def scheduler(cache_store, stub_provider) -> Scheduler:
    return Scheduler(
        cache_store,
        stub_provider,
        max_history=20,
        fetch_delay_seconds=0,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        scheduler_enabled=False,
        scheduler_fetch_delay_seconds=0,
        cache_connect_attempts=1,
        cors_origins="http://localhost:5173",
    )


@pytest.fixture
def app(test_settings, cache_store, stub_provider):
    return create_app(test_settings, cache=cache_store, provider=stub_provider)


@pytest.fixture
def client(app):
    """FastAPI TestClient running the app lifespan."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def loop_ticker() -> LoopTicker:
    return LoopTicker()
