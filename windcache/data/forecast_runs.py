"""
GFS run selection.

GFS runs at 00Z, 06Z, 12Z and 18Z and takes roughly five and a half hours
to be fully published on NOMADS.  These helpers produce an ordered list of
runs to try so the fetcher can fall back from "ready and recent" to older
runs when the newest one is not available yet.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from windcache.data.models import ForecastRunCandidate

logger = logging.getLogger(__name__)

RUN_HOURS = (0, 6, 12, 18)
RUN_SPACING_HOURS = 6

# Hours after the run reference time before data is normally available
READINESS_THRESHOLD_HOURS = 5.5

# 8 runs = 48 hours of coverage
CURRENT_CANDIDATE_COUNT = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)


def snap_to_run_hour(when: datetime) -> datetime:
    """Round *when* down to the nearest synoptic hour (00/06/12/18 UTC)."""
    when = _as_utc(when)
    run_hour = max(h for h in RUN_HOURS if h <= when.hour)
    return when.replace(hour=run_hour, minute=0, second=0, microsecond=0)


def _hours_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 3600.0


def make_candidate(run_time: datetime, now: datetime) -> ForecastRunCandidate:
    run_time = _as_utc(run_time)
    return ForecastRunCandidate(
        run_date=run_time.date(),
        run_hour=run_time.hour,
        run_timestamp=run_time,
        hours_since_run=_hours_between(now, run_time),
    )


def get_available_forecast_runs(now: Optional[datetime] = None) -> List[ForecastRunCandidate]:
    """
    Candidate runs for the "most recent data" case, in the order to try them.

    Runs old enough to be published (>= 5.5 h) come first; within each
    readiness bucket the most recent run wins.
    """
    now = _as_utc(now) if now is not None else _utcnow()

    runs: List[ForecastRunCandidate] = []
    seen = set()
    for i in range(CURRENT_CANDIDATE_COUNT):
        run_time = snap_to_run_hour(now - timedelta(hours=i * RUN_SPACING_HOURS))
        key = (run_time.date(), run_time.hour)
        if key in seen:
            continue
        seen.add(key)
        runs.append(make_candidate(run_time, now))

    runs.sort(
        key=lambda r: (r.hours_since_run >= READINESS_THRESHOLD_HOURS, r.run_timestamp),
        reverse=True,
    )
    return runs


def get_historical_forecast_runs(
    run_age_hours: int,
    now: Optional[datetime] = None,
) -> List[ForecastRunCandidate]:
    """
    Candidate runs for data issued *run_age_hours* ago.

    Returns the primary run followed by the runs 6 h before and 6 h after it.
    No readiness re-ranking is applied.
    """
    now = _as_utc(now) if now is not None else _utcnow()
    target_run = snap_to_run_hour(now - timedelta(hours=run_age_hours))

    runs = [make_candidate(target_run, now)]
    for offset in (-RUN_SPACING_HOURS, RUN_SPACING_HOURS):
        runs.append(make_candidate(target_run + timedelta(hours=offset), now))
    return runs


def candidate_runs(run_age_hours: int = 0, now: Optional[datetime] = None) -> List[ForecastRunCandidate]:
    """Historical candidates when *run_age_hours* > 0, otherwise current candidates."""
    if run_age_hours > 0:
        logger.info(f"Targeting historical run from {run_age_hours}h ago")
        runs = get_historical_forecast_runs(run_age_hours, now=now)
    else:
        runs = get_available_forecast_runs(now=now)

    logger.info("Forecast runs to try (in order):")
    for i, run in enumerate(runs, start=1):
        logger.info(f"  {i}. {run.name} ({run.hours_since_run:.1f}h ago)")
    return runs
