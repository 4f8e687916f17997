"""
Exception taxonomy for the forecast ingestion pipeline.

Upstream errors are raised per request and absorbed by the run-candidate
fallback loop in ``windcache.data.opendap``; cache errors surface to the
scheduler and HTTP handlers.
"""
from typing import Optional


class WindCacheError(Exception):
    """Base class for all pipeline errors."""


class UpstreamError(WindCacheError):
    """A single upstream request could not produce a usable grid."""


class MalformedUpstreamResponse(UpstreamError):
    """Tabular response parsed but violated grid invariants (empty axis/plane, size mismatch)."""


class UpstreamDatasetUnavailable(UpstreamError):
    """Upstream answered with an HTML/XML error document instead of data."""

    def __init__(self, message: str, label: Optional[str] = None):
        self.message = message
        self.label = label
        prefix = f"OpenDAP error ({label})" if label else "OpenDAP error"
        super().__init__(f"{prefix}: {message}")


class UpstreamRequestFailed(UpstreamError):
    """Network error, timeout or non-success HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CacheError(WindCacheError):
    """Base class for cache store errors."""


class PayloadNotChunkable(CacheError):
    """Value exceeds the payload ceiling and has no list to split."""

    def __init__(self, key: str, size: int):
        self.key = key
        self.size = size
        super().__init__(
            f"Data too large ({size} bytes) at key '{key}' and cannot be chunked automatically"
        )


class CacheBackendError(CacheError):
    """The underlying key-value store failed."""
