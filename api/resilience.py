"""
Retry helpers for the wind cache service.

Upstream forecast requests are retried by the run-candidate fallback in
``windcache.data.opendap``; this module covers everything else (the cache
backend connection at startup).
"""
import logging
import functools
from typing import TypeVar, Callable

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from api.cache import CacheStore
from windcache.errors import CacheBackendError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def with_retry_async(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    exceptions: tuple = (Exception,),
):
    """
    Async decorator for adding retry logic with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        exceptions: Tuple of exception types to retry on
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await func(*args, **kwargs)

        return wrapper

    return decorator


async def wait_for_cache(
    store: CacheStore,
    max_attempts: int = 5,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> None:
    """
    Block until the cache backend answers PING.

    Raises:
        CacheBackendError: Still unreachable after *max_attempts*.
    """
    @with_retry_async(
        max_attempts=max_attempts,
        min_wait=min_wait,
        max_wait=max_wait,
        exceptions=(CacheBackendError,),
    )
    async def _ping():
        await store.ping()

    await _ping()
    logger.info("Redis: Connected and ready")
