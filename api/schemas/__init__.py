"""
Wind cache API Pydantic schemas.

Re-exports all schema classes:
    from api.schemas import WindStatusResponse, WindRefreshResponse, ...
"""

from .wind import (  # noqa: F401
    LastFetchModel,
    WindStatusResponse,
    WindRefreshResponse,
    IndexEntryModel,
    ErrorResponse,
    index_list,
)
