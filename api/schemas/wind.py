"""Wind/precipitation cache API schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from api.cache import IndexEntry
from api.state import LastFetchInfo, StatusSnapshot


class LastFetchModel(BaseModel):
    """Outcome of the most recent fetch cycle."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    timestamp: datetime
    data_points: int = Field(alias="dataPoints")

    @classmethod
    def from_info(cls, info: LastFetchInfo) -> "LastFetchModel":
        return cls(success=info.success, timestamp=info.timestamp, data_points=info.data_points)


class WindStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    running: bool
    last_fetch: Optional[LastFetchModel] = Field(default=None, alias="lastFetch")

    @classmethod
    def from_snapshot(cls, snapshot: StatusSnapshot) -> "WindStatusResponse":
        return cls(
            running=snapshot.running,
            last_fetch=LastFetchModel.from_info(snapshot.last_fetch) if snapshot.last_fetch else None,
        )


class WindRefreshResponse(BaseModel):
    success: bool
    status: WindStatusResponse


class IndexEntryModel(BaseModel):
    """One cached historical version."""
    model_config = ConfigDict(populate_by_name=True)

    index: int
    timestamp: str
    data_points: int = Field(alias="dataPoints")
    run_name: Optional[str] = Field(default=None, alias="runName")
    data_time: Optional[str] = Field(default=None, alias="dataTime")
    hours_back: Optional[float] = Field(default=None, alias="hoursBack")
    forecast_offset: Optional[int] = Field(default=None, alias="forecastOffset")
    run_age: Optional[int] = Field(default=None, alias="runAge")

    @classmethod
    def from_entry(cls, entry: IndexEntry) -> "IndexEntryModel":
        return cls.model_validate(entry.to_dict())


class ErrorResponse(BaseModel):
    error: str


def index_list(entries: List[IndexEntry]) -> List[IndexEntryModel]:
    return [IndexEntryModel.from_entry(e) for e in entries]
