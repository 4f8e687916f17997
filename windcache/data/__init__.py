"""GFS forecast acquisition: run selection, OpenDAP parsing and wind rasters."""

from .forecast_runs import (
    candidate_runs,
    get_available_forecast_runs,
    get_historical_forecast_runs,
)
from .grid_stitch import stitch_grids
from .models import (
    DownloadedPrecipitationData,
    DownloadedWindData,
    ForecastRunCandidate,
    ParsedGrid,
    PrecipitationPoint,
    WindMetadata,
    WindPoint,
)
from .opendap import GLOBAL_BOUNDS, GFSOpenDAPProvider, GridBounds
from .opendap_parser import parse_opendap_ascii, parse_precipitation_ascii, parse_wind_ascii
from .png_codec import decode_wind_png, encode_wind_png

__all__ = [
    'candidate_runs',
    'get_available_forecast_runs',
    'get_historical_forecast_runs',
    'stitch_grids',
    'DownloadedPrecipitationData',
    'DownloadedWindData',
    'ForecastRunCandidate',
    'ParsedGrid',
    'PrecipitationPoint',
    'WindMetadata',
    'WindPoint',
    'GLOBAL_BOUNDS',
    'GFSOpenDAPProvider',
    'GridBounds',
    'parse_opendap_ascii',
    'parse_precipitation_ascii',
    'parse_wind_ascii',
    'decode_wind_png',
    'encode_wind_png',
]
