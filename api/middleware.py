"""
Request middleware for the wind cache service.

Every request gets an ``X-Request-ID``.  Request logs are JSON lines on
the ``windcache.requests`` logger and are shaped by route:

- cache reads (``/api/wind-global``, ``/api/precipitation-global``,
  ``/api/windgl/metadata.json``) log the dataset, the history index and
  whether the cache had the entry
- manual refreshes log which cycle was triggered and its outcome
- WindGL raster fetches (``/api/windgl/wind.png``) are map-tile traffic
  and only log at DEBUG
- health checks are not logged
"""
import json
import logging
import re
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

SERVICE_NAME = "windcache-api"
REQUEST_ID_HEADER = "X-Request-ID"

HEALTH_PATHS = frozenset({"/api/health", "/health"})

_READ_ROUTE = re.compile(r"^/api/(?P<dataset>wind|precipitation)-global(?:/(?P<index>\d+))?$")
_WINDGL_ROUTE = re.compile(r"^/api/windgl/(?P<asset>wind\.png|metadata\.json)(?:/(?P<index>\d+))?$")
_REFRESH_ROUTES = {
    "/api/wind-refresh": "history",
    "/api/wind-refresh-latest": "latest",
}

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

request_logger = logging.getLogger("windcache.requests")


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def log_event(level: int, message: str, **fields: Any) -> None:
    """Emit one JSON line tagged with the service and request ID; ``None`` fields are dropped."""
    if not request_logger.isEnabledFor(level):
        return
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": logging.getLevelName(level),
        "message": message,
        "service": SERVICE_NAME,
        "request_id": get_request_id(),
        **fields,
    }
    request_logger.log(level, json.dumps({k: v for k, v in entry.items() if v is not None}))


@dataclass(frozen=True)
class RouteInfo:
    """What a request path means for the cache."""

    kind: str  # "read", "raster", "refresh", "other"
    dataset: Optional[str] = None
    index: Optional[int] = None
    cycle: Optional[str] = None


def describe_route(method: str, path: str) -> RouteInfo:
    if method == "POST" and path in _REFRESH_ROUTES:
        return RouteInfo(kind="refresh", cycle=_REFRESH_ROUTES[path])

    match = _READ_ROUTE.match(path)
    if match:
        index = match.group("index")
        return RouteInfo(
            kind="read",
            dataset=match.group("dataset"),
            index=int(index) if index is not None else None,
        )

    match = _WINDGL_ROUTE.match(path)
    if match:
        index = match.group("index")
        kind = "raster" if match.group("asset") == "wind.png" else "read"
        return RouteInfo(
            kind=kind,
            dataset="windgl",
            index=int(index) if index is not None else None,
        )

    return RouteInfo(kind="other")


def cache_outcome(status_code: int) -> str:
    """Read routes answer 404/503 when the cache has no entry."""
    if status_code < 400:
        return "hit"
    if status_code in (404, 503):
        return "miss"
    return "error"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates a request ID and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in HEALTH_PATHS:
            return await call_next(request)

        route = describe_route(request.method, path)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log_event(
                logging.ERROR,
                "Request failed",
                method=request.method,
                path=path,
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        status = response.status_code

        if route.kind == "refresh":
            log_event(
                logging.INFO if status < 500 else logging.ERROR,
                "Refresh triggered",
                cycle=route.cycle,
                status_code=status,
                duration_ms=duration_ms,
            )
        elif route.kind in ("read", "raster"):
            log_event(
                logging.DEBUG if route.kind == "raster" else logging.INFO,
                "Cache read",
                dataset=route.dataset,
                index=route.index,
                cache=cache_outcome(status),
                status_code=status,
                bytes=int(response.headers.get("content-length", 0)) or None,
                duration_ms=duration_ms,
            )
        else:
            log_event(
                logging.INFO,
                "Request completed",
                method=request.method,
                path=path,
                status_code=status,
                duration_ms=duration_ms,
            )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Turns unhandled exceptions into a 500 carrying the request ID.

    The exception text is only returned in debug mode.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_logger.error(
                f"Unhandled exception on {request.method} {request.url.path}: {e}",
                exc_info=True,
            )
            request_id = get_request_id()
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal Server Error",
                    "detail": str(e) if self.debug else "An internal error occurred.",
                    "request_id": request_id,
                },
            )


def setup_middleware(app: FastAPI, debug: bool = False):
    """Register the stack; the last added runs outermost, so the request ID is set first."""
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    app.add_middleware(RequestIdMiddleware)
