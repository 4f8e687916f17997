"""
Unit tests for request classification in the logging middleware.
"""

import pytest

from api.middleware import RouteInfo, cache_outcome, describe_route


class TestDescribeRoute:

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/api/wind-global", RouteInfo(kind="read", dataset="wind")),
            ("/api/wind-global/4", RouteInfo(kind="read", dataset="wind", index=4)),
            ("/api/precipitation-global/0", RouteInfo(kind="read", dataset="precipitation", index=0)),
            ("/api/windgl/metadata.json/2", RouteInfo(kind="read", dataset="windgl", index=2)),
            ("/api/windgl/wind.png", RouteInfo(kind="raster", dataset="windgl")),
            ("/api/windgl/wind.png/7", RouteInfo(kind="raster", dataset="windgl", index=7)),
            ("/api/wind-indices", RouteInfo(kind="other")),
            ("/api/wind-status", RouteInfo(kind="other")),
        ],
    )
    def test_get_routes(self, path, expected):
        assert describe_route("GET", path) == expected

    def test_refresh_cycles(self):
        assert describe_route("POST", "/api/wind-refresh") == RouteInfo(kind="refresh", cycle="history")
        assert describe_route("POST", "/api/wind-refresh-latest").cycle == "latest"
        assert describe_route("GET", "/api/wind-refresh").kind == "other"


class TestCacheOutcome:

    def test_outcomes(self):
        assert cache_outcome(200) == "hit"
        assert cache_outcome(404) == "miss"
        assert cache_outcome(503) == "miss"
        assert cache_outcome(500) == "error"
