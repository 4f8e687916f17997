"""
Forecast fetch scheduler.

Two cycles feed the cache:

- Full history (startup and ``POST /api/wind-refresh``): eight targets
  covering the last 24 h in 3 h steps, each mapped onto a published GFS
  run and forecast offset.  Targets run strictly one after another with
  a short pause in between.
- Latest only (every ``scheduler_interval_seconds`` and
  ``POST /api/wind-refresh-latest``): the current run at f+0, skipped
  when it is already cached.

Every target is checked against the cached history first so a cycle
never hits the upstream server for a forecast time it already has.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from api.cache import CacheStore, OpaqueValue, PointsObject, within_tolerance
from api.state import SchedulerStatus, StatusSnapshot
from windcache.data.models import GFS_RESOLUTION_DEG, GFS_SOURCE_LABEL
from windcache.data.opendap import GFSOpenDAPProvider
from windcache.errors import CacheBackendError, PayloadNotChunkable, UpstreamError

logger = logging.getLogger(__name__)

# Redis keys
WIND_POINTS_KEY = "wind:points"
WIND_PNG_KEY = "wind:png"
WIND_METADATA_KEY = "wind:metadata"
PRECIPITATION_POINTS_KEY = "precipitation:points"
LAST_UPDATE_KEY = "wind:last_update"

HISTORY_HOURS_BACK = (0, 3, 6, 9, 12, 15, 18, 21)
HISTORY_RUN_AGES = (6, 12, 18, 24)
MAX_FORECAST_OFFSET = 24
OFFSET_STEP_HOURS = 3

GLOBAL_BOUNDS_JSON = {"lat": [-90, 90], "lon": [-180, 180]}


@dataclass(frozen=True)
class ForecastTarget:
    run_age: int
    offset: int

    @property
    def hours_back(self) -> int:
        return self.run_age - self.offset


def calculate_historical_forecast_targets() -> List[ForecastTarget]:
    """Map each hoursBack in 0..21 (step 3) onto the youngest run age that covers it."""
    targets = []
    for hours_back in HISTORY_HOURS_BACK:
        for run_age in HISTORY_RUN_AGES:
            offset = run_age - hours_back
            if 0 <= offset <= MAX_FORECAST_OFFSET and offset % OFFSET_STEP_HOURS == 0:
                targets.append(ForecastTarget(run_age=run_age, offset=offset))
                break
        else:
            logger.error(f"Could not find GFS run/offset for {hours_back}h ago")
    return targets


def calculate_run_name(run_age: int, now: datetime) -> str:
    """``YYYYMMDD_HHZ`` of the run cycle containing ``now - run_age``."""
    run_time = now - timedelta(hours=run_age)
    cycle_hour = (run_time.hour // 6) * 6
    return f"{run_time.strftime('%Y%m%d')}_{cycle_hour:02d}Z"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """
    Drives fetch cycles through the cache and tracks their outcome.

    Args:
        cache: Cache store the snapshots are written to.
        provider: Upstream GFS provider.
        max_history: History depth for every indexed key.
        interval_seconds: Period of the latest-only cycle.
        fetch_delay_seconds: Pause between full-history targets.
        clock: Returns "now" (UTC).
    """

    def __init__(
        self,
        cache: CacheStore,
        provider: GFSOpenDAPProvider,
        max_history: int = 20,
        interval_seconds: float = 300,
        fetch_delay_seconds: float = 1.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self.provider = provider
        self.max_history = max_history
        self.interval_seconds = interval_seconds
        self.fetch_delay_seconds = fetch_delay_seconds
        self._clock = clock or _utcnow
        self.status = SchedulerStatus()
        self._startup_task: Optional[asyncio.Task] = None
        self._recurring_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Mark running, fetch the last 24 h, then start the recurring cycle."""
        logger.info(
            f"Starting wind data scheduler (latest check every {self.interval_seconds}s)"
        )
        await self.status.set_running(True)

        logger.info("Running initial 24h historical data fetch...")
        try:
            await self.fetch_historical_24h()
        except Exception as e:
            # the latest-only cycle still has to run
            logger.error(f"Initial 24h fetch failed: {e}", exc_info=True)

        self._recurring_task = asyncio.create_task(self._recurring_loop())
        logger.info("Wind data scheduler started")

    def start_in_background(self) -> asyncio.Task:
        self._startup_task = asyncio.create_task(self.start())
        return self._startup_task

    async def stop(self) -> None:
        # startup may still be creating the recurring task
        await self._finish(self._startup_task)
        await self._finish(self._recurring_task)
        self._startup_task = None
        self._recurring_task = None
        await self.status.set_running(False)
        logger.info("Wind data scheduler stopped")

    @staticmethod
    async def _finish(task: Optional[asyncio.Task]) -> None:
        """Cancel a scheduler task and collect its outcome."""
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Scheduler task ended with an error: {e}", exc_info=True)

    async def _recurring_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            logger.info("Scheduled latest forecast check triggered")
            try:
                await self.fetch_latest_forecast()
            except Exception as e:
                logger.error(f"Latest forecast fetch failed: {e}", exc_info=True)

    async def get_status(self) -> StatusSnapshot:
        return await self.status.snapshot()

    # ------------------------------------------------------------------
    # Fetch cycles
    # ------------------------------------------------------------------

    async def _already_cached(self, data_time: datetime) -> bool:
        entries = await self.cache.list_indices(WIND_POINTS_KEY)
        return any(within_tolerance(e.data_datetime, data_time) for e in entries)

    def _snapshot_meta(
        self,
        now: datetime,
        run_name: str,
        forecast_offset: int,
        run_age: int,
        data_time: datetime,
    ) -> Dict[str, Any]:
        return {
            "timestamp": now.isoformat(),
            "runName": run_name,
            "forecastOffset": forecast_offset,
            "runAge": run_age,
            "dataTime": data_time.isoformat(),
            "hoursBack": run_age - forecast_offset,
            "source": GFS_SOURCE_LABEL,
            "resolution": GFS_RESOLUTION_DEG,
        }

    async def fetch_and_store_single_forecast(self, forecast_offset: int, run_age: int) -> bool:
        """
        Fetch wind (and precipitation) for one target and cache it.

        Returns:
            True when the target is stored or was already cached, False when
            every upstream run failed for wind.

        Raises:
            CacheBackendError: Redis failure.
        """
        now = self._clock()
        hours_back = run_age - forecast_offset
        run_name = calculate_run_name(run_age, now)
        data_time = now - timedelta(hours=hours_back)

        logger.info(f"=== Fetching data: Run {run_name} + f+{forecast_offset} ({hours_back}h ago) ===")

        if await self._already_cached(data_time):
            logger.info(f"Data for {data_time.isoformat()} (±2h) already cached, skipping")
            return True

        try:
            wind = await self.provider.download_wind_data(forecast_offset, run_age)
        except UpstreamError as e:
            logger.error(f"Failed to fetch wind data for run -{run_age}h + f{forecast_offset}: {e}")
            return False
        logger.info(f"Fetched {len(wind.wind_points)} wind data points from {wind.run_name}")

        meta = self._snapshot_meta(now, run_name, forecast_offset, run_age, data_time)
        wind_snapshot = PointsObject(
            meta={**meta, "source": wind.metadata.source, "region": "Global", "bounds": GLOBAL_BOUNDS_JSON},
            points=[p.to_dict() for p in wind.wind_points],
        )
        index = await self.cache.set_indexed(
            wind_snapshot,
            WIND_POINTS_KEY,
            self.max_history,
            companion_keys=(WIND_PNG_KEY, WIND_METADATA_KEY),
        )
        await self.cache.set_binary_indexed(WIND_PNG_KEY, index, wind.png_buffer)

        metadata = OpaqueValue(wind.metadata.to_dict())
        await self.cache.set_value(f"{WIND_METADATA_KEY}:{index}", metadata)
        if run_age == 0 and forecast_offset == 0:
            await self.cache.set_value(WIND_METADATA_KEY, metadata)
        logger.info(f"Stored wind points, PNG and metadata at index {index} ({hours_back}h ago)")

        try:
            precip = await self.provider.download_precipitation_data(forecast_offset, run_age)
            precip_snapshot = PointsObject(
                meta={**meta, "unit": "mm/h", "bounds": GLOBAL_BOUNDS_JSON},
                points=[p.to_dict() for p in precip.precip_points],
            )
            precip_index = await self.cache.set_indexed(
                precip_snapshot, PRECIPITATION_POINTS_KEY, self.max_history
            )
            logger.info(f"Stored precipitation data at index {precip_index} ({hours_back}h ago)")
        except (UpstreamError, PayloadNotChunkable) as e:
            logger.error(f"Failed to fetch/store precipitation data for +{forecast_offset}h: {e}")

        logger.info(f"=== Data for +{forecast_offset}h stored ===")
        return True

    async def fetch_historical_24h(self) -> bool:
        """
        Full-history cycle.

        Returns:
            True when at least one target succeeded.

        Raises:
            CacheBackendError: Redis failure; ``lastFetch`` is recorded as failed,
                as it is for any other unexpected error.
        """
        logger.info("=== Starting 24h historical data fetch ===")
        targets = calculate_historical_forecast_targets()
        now = self._clock()
        for target in targets:
            logger.info(
                f"  {calculate_run_name(target.run_age, now)} + f+{target.offset} "
                f"= data for {target.hours_back}h ago"
            )

        success_count = 0
        failure_count = 0
        for target in targets:
            try:
                ok = await self.fetch_and_store_single_forecast(target.offset, target.run_age)
            except PayloadNotChunkable as e:
                logger.error(f"Failed to store target {target}: {e}")
                ok = False
            except Exception:
                await self.status.record_fetch(False, success_count)
                raise

            if ok:
                success_count += 1
            else:
                failure_count += 1

            if self.fetch_delay_seconds > 0:
                await asyncio.sleep(self.fetch_delay_seconds)

        success = success_count > 0
        summary = {
            "timestamp": self._clock().isoformat(),
            "success": success,
            "successCount": success_count,
            "failureCount": failure_count,
            "totalForecasts": len(targets),
        }
        try:
            await self.cache.set_value(LAST_UPDATE_KEY, OpaqueValue(summary))
        finally:
            await self.status.record_fetch(success, success_count)

        logger.info(f"=== Fetch complete: {success_count} success, {failure_count} failures ===")
        return success

    async def fetch_latest_forecast(self) -> bool:
        """Latest-only cycle: current run at f+0 unless already cached."""
        logger.info("=== Checking for latest forecast ===")
        current_run_name = calculate_run_name(0, self._clock())

        try:
            entries = await self.cache.list_indices(WIND_POINTS_KEY)
        except CacheBackendError:
            await self.status.record_fetch(False, 0)
            raise

        if any(e.run_name == current_run_name and e.forecast_offset == 0 for e in entries):
            logger.info(f"Latest forecast {current_run_name} + f+0 already cached, skipping")
            return True

        logger.info(f"Fetching latest forecast {current_run_name} + f+0...")
        try:
            success = await self.fetch_and_store_single_forecast(0, 0)
        except PayloadNotChunkable as e:
            logger.error(f"Failed to store latest forecast: {e}")
            success = False
        except Exception:
            await self.status.record_fetch(False, 0)
            raise

        await self.status.record_fetch(success, 1 if success else 0)
        if success:
            logger.info("=== Latest forecast stored ===")
        else:
            logger.warning("=== Failed to fetch latest forecast ===")
        return success
