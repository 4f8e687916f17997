"""
FastAPI dependencies resolving the per-application cache and scheduler.

Both live on ``app.state`` (set up in :func:`api.main.create_app`), never
as module globals, so tests can build isolated applications.
"""
from typing import Optional

from fastapi import HTTPException, Request

from api.cache import CacheStore
from api.scheduler import Scheduler


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def get_optional_scheduler(request: Request) -> Optional[Scheduler]:
    return getattr(request.app.state, "scheduler", None)


def get_scheduler(request: Request) -> Scheduler:
    scheduler = get_optional_scheduler(request)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not available")
    return scheduler
