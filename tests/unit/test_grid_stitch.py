"""
Unit tests for parsed grids and antimeridian stitching.
"""

import numpy as np
import pytest

from windcache.data.grid_stitch import needs_stitching, stitch_grids
from windcache.data.models import ParsedGrid, WindPoint, build_precipitation_points, build_wind_points
from windcache.errors import MalformedUpstreamResponse


def _west():
    return ParsedGrid(
        latitudes=[10.0, 10.5],
        longitudes=[359.0, 359.5],
        planes={"ugrd10m": [1, 2, 3, 4], "vgrd10m": [-1, -2, -3, -4]},
    )


def _east():
    return ParsedGrid(
        latitudes=[10.0, 10.5],
        longitudes=[0.0, 0.5, 1.0],
        planes={"ugrd10m": [10, 11, 12, 13, 14, 15], "vgrd10m": [0, 0, 0, 1, 1, 1]},
    )


class TestParsedGrid:

    def test_dimensions(self):
        grid = _east()
        assert (grid.width, grid.height) == (3, 2)
        assert grid.plane_2d("ugrd10m").shape == (2, 3)

    def test_wrong_plane_length_rejected(self):
        with pytest.raises(MalformedUpstreamResponse):
            ParsedGrid(latitudes=[0.0, 0.5], longitudes=[0.0], planes={"pratesfc": [1.0]})

    def test_empty_axis_rejected(self):
        with pytest.raises(MalformedUpstreamResponse):
            ParsedGrid(latitudes=[], longitudes=[0.0], planes={})


class TestStitch:

    def test_needs_stitching(self):
        assert needs_stitching(-180.0)
        assert needs_stitching(-0.5)
        assert not needs_stitching(0.0)
        assert not needs_stitching(90.0)

    def test_longitudes_shifted_and_joined(self):
        grid = stitch_grids(_west(), _east())
        np.testing.assert_allclose(grid.longitudes, [-1.0, -0.5, 0.0, 0.5, 1.0])
        np.testing.assert_allclose(grid.latitudes, [10.0, 10.5])

    def test_rows_are_west_then_east(self):
        west, east = _west(), _east()
        grid = stitch_grids(west, east)

        assert grid.width == west.width + east.width
        np.testing.assert_allclose(grid.planes["ugrd10m"], [1, 2, 10, 11, 12, 3, 4, 13, 14, 15])
        for y in range(grid.height):
            for name in ("ugrd10m", "vgrd10m"):
                expected = np.concatenate([west.row(name, y), east.row(name, y)])
                np.testing.assert_allclose(grid.row(name, y), expected)

    def test_inputs_untouched(self):
        west = _west()
        stitch_grids(west, _east())
        np.testing.assert_allclose(west.longitudes, [359.0, 359.5])

    def test_height_mismatch(self):
        east = ParsedGrid(latitudes=[10.0], longitudes=[0.0], planes={"ugrd10m": [1], "vgrd10m": [1]})
        with pytest.raises(MalformedUpstreamResponse, match="latitude rows"):
            stitch_grids(_west(), east)

    def test_plane_mismatch(self):
        east = ParsedGrid(latitudes=[10.0, 10.5], longitudes=[0.0], planes={"pratesfc": [1, 2]})
        with pytest.raises(MalformedUpstreamResponse, match="planes"):
            stitch_grids(_west(), east)


class TestPoints:

    def test_wind_direction_is_meteorological(self):
        from_north = WindPoint.from_components(0.0, 0.0, 0.0, -5.0)
        from_west = WindPoint.from_components(0.0, 0.0, 5.0, 0.0)
        assert from_north.speed == pytest.approx(5.0)
        assert from_north.direction == pytest.approx(0.0)
        assert from_west.direction == pytest.approx(270.0)
        assert from_west.gusts == 0.0

    def test_wind_points_follow_grid_order(self):
        points = build_wind_points(_east(), "ugrd10m", "vgrd10m")
        assert len(points) == 6
        assert (points[0].lat, points[0].lon, points[0].u) == (10.0, 0.0, 10.0)
        assert (points[4].lat, points[4].lon, points[4].u) == (10.5, 0.5, 14.0)
        assert points[4].speed == pytest.approx(np.hypot(14.0, 1.0))

    def test_precipitation_rate_in_mm_per_hour(self):
        grid = ParsedGrid(latitudes=[0.0], longitudes=[0.0, 0.5], planes={"pratesfc": [0.0, 0.001]})
        points = build_precipitation_points(grid, "pratesfc")
        assert points[0].rate == 0.0
        assert points[1].rate == pytest.approx(3.6)
        assert points[1].to_dict() == {"lat": 0.0, "lon": 0.5, "rate": pytest.approx(3.6)}
