"""
Scheduler status for the wind cache service.

The status is owned by one :class:`~api.scheduler.Scheduler` instance and
shared with the HTTP handlers through it.  Writers (the scheduler's
background loop and the manual refresh handlers) take the lock
exclusively; status queries share it.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    asyncio reader/writer lock.

    Any number of readers may hold it together; a writer waits for active
    readers to finish and blocks new readers while it waits.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class LastFetchInfo:
    success: bool
    timestamp: datetime
    data_points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "dataPoints": self.data_points,
        }


@dataclass(frozen=True)
class StatusSnapshot:
    running: bool = False
    last_fetch: Optional[LastFetchInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "lastFetch": self.last_fetch.to_dict() if self.last_fetch else None,
        }


class SchedulerStatus:
    """Running flag plus the outcome of the most recent fetch cycle."""

    def __init__(self):
        self._lock = ReadWriteLock()
        self._state = StatusSnapshot()

    async def snapshot(self) -> StatusSnapshot:
        async with self._lock.read():
            return self._state

    async def set_running(self, running: bool) -> None:
        async with self._lock.write():
            self._state = replace(self._state, running=running)

    async def record_fetch(
        self,
        success: bool,
        data_points: int,
        timestamp: Optional[datetime] = None,
    ) -> LastFetchInfo:
        info = LastFetchInfo(
            success=success,
            timestamp=timestamp or datetime.now(timezone.utc),
            data_points=data_points,
        )
        async with self._lock.write():
            self._state = replace(self._state, last_fetch=info)
        logger.info(f"Scheduler status: last fetch success={success}, dataPoints={data_points}")
        return info
