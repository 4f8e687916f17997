"""
Antimeridian stitching.

NOMADS serves longitudes on a 0..359.5 axis, so a box such as
[-180, 180] has to be fetched as two halves and joined back together.
"""

import logging

import numpy as np

from windcache.data.models import ParsedGrid
from windcache.errors import MalformedUpstreamResponse

logger = logging.getLogger(__name__)


def needs_stitching(lon_min: float) -> bool:
    return lon_min < 0


def stitch_grids(west: ParsedGrid, east: ParsedGrid) -> ParsedGrid:
    """
    Join a west half (upstream 0..359.5 convention) and an east half.

    West longitudes are shifted by -360.  For every plane, each latitude
    row becomes ``west_row ++ east_row``.  The latitude axis is taken from
    the west half.

    Raises:
        MalformedUpstreamResponse: The halves disagree on the number of
            rows or on the plane names.
    """
    if west.height != east.height:
        raise MalformedUpstreamResponse(
            f"Cannot stitch grids with {west.height} and {east.height} latitude rows"
        )
    if set(west.planes) != set(east.planes):
        raise MalformedUpstreamResponse(
            f"Cannot stitch grids with planes {sorted(west.planes)} and {sorted(east.planes)}"
        )

    longitudes = np.concatenate([west.longitudes - 360.0, east.longitudes])
    planes = {
        name: np.hstack([west.plane_2d(name), east.plane_2d(name)]).ravel()
        for name in west.planes
    }

    stitched = ParsedGrid(
        latitudes=west.latitudes.copy(),
        longitudes=longitudes,
        planes=planes,
    )
    logger.info(
        f"Stitched grid: {west.width} west + {east.width} east = "
        f"{stitched.width}x{stitched.height}"
    )
    return stitched
