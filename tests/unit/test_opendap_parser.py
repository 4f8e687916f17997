"""
Unit tests for the OpenDAP ASCII parser.

Covers:
- Axis and plane extraction, including repeated map vectors
- Grid invariants (empty axis, size mismatch)
- Error document detection and message extraction
"""

import numpy as np
import pytest

from windcache.data.opendap_parser import (
    UNKNOWN_OPENDAP_ERROR,
    extract_numbers,
    extract_numbers_from_indexed_line,
    extract_opendap_error,
    is_error_document,
    parse_opendap_ascii,
    parse_precipitation_ascii,
    parse_wind_ascii,
    raise_for_error_document,
)
from windcache.errors import MalformedUpstreamResponse, UpstreamDatasetUnavailable

LATS = [-90.0, -89.5, -89.0]
LONS = [0.0, 0.5, 1.0, 1.5]
U_ROWS = [[1.1, 1.2, 1.3, 1.4], [2.1, 2.2, 2.3, 2.4], [3.1, 3.2, 3.3, 3.4]]
V_ROWS = [[-1.0, -2.0, -3.0, -4.0], [0.0, 0.0, 0.0, 0.0], [5.5, 6.5, 7.5, 8.5]]

ERROR_PAGE = (
    "<html><head><title>GrADS Data Server</title></head><body>"
    "<p><b>GrADS Data Server: gfs20260121/gfs_0p50_06z is not an available dataset</b></p>"
    "</body></html>"
)


class TestNumberExtraction:

    def test_comma_and_whitespace_separated(self):
        assert extract_numbers(" 1.5, -2.25,3e-3  4 ") == [1.5, -2.25, 0.003, 4.0]

    def test_unparseable_tokens_dropped(self):
        assert extract_numbers("1.0, abc, 2.0") == [1.0, 2.0]

    def test_indexed_line_prefix_stripped(self):
        assert extract_numbers_from_indexed_line("[0][12], 1.5, -2.25") == [1.5, -2.25]


class TestParseWind:

    def test_axes_and_planes(self, opendap_ascii):
        body = opendap_ascii(LATS, LONS, {"ugrd10m": U_ROWS, "vgrd10m": V_ROWS})
        grid = parse_wind_ascii(body)

        assert grid.width == 4
        assert grid.height == 3
        np.testing.assert_allclose(grid.latitudes, LATS)
        np.testing.assert_allclose(grid.longitudes, LONS)
        np.testing.assert_allclose(grid.planes["ugrd10m"], np.ravel(U_ROWS))
        np.testing.assert_allclose(grid.planes["vgrd10m"], np.ravel(V_ROWS))

    def test_only_first_map_vectors_are_read(self, opendap_ascii):
        body = opendap_ascii(LATS, LONS, {"ugrd10m": U_ROWS, "vgrd10m": V_ROWS})
        assert body.count("lat, [3]") == 2

        grid = parse_wind_ascii(body)
        assert len(grid.latitudes) == 3
        assert len(grid.longitudes) == 4

    def test_time_values_ignored(self, opendap_ascii):
        body = opendap_ascii(LATS, LONS, {"ugrd10m": U_ROWS, "vgrd10m": V_ROWS})
        grid = parse_wind_ascii(body)
        assert 739637.0 not in grid.latitudes
        assert 739637.0 not in grid.planes["ugrd10m"]

    def test_axis_split_over_lines(self):
        body = "\n".join([
            "pratesfc, [1][1][4]",
            "[0][0], 0.1, 0.2, 0.3, 0.4",
            "lat, [1]",
            "10.0",
            "lon, [4]",
            "0.0, 0.5",
            "1.0, 1.5",
        ])
        grid = parse_precipitation_ascii(body)
        np.testing.assert_allclose(grid.longitudes, [0.0, 0.5, 1.0, 1.5])

    def test_row_order_is_lat_major(self, opendap_ascii):
        body = opendap_ascii(LATS, LONS, {"ugrd10m": U_ROWS, "vgrd10m": V_ROWS})
        grid = parse_wind_ascii(body)
        np.testing.assert_allclose(grid.row("ugrd10m", 1), U_ROWS[1])


class TestParseInvalid:

    def test_missing_lon_axis(self):
        body = "\n".join([
            "ugrd10m, [1][1][2]",
            "[0][0], 1.0, 2.0",
            "vgrd10m, [1][1][2]",
            "[0][0], 3.0, 4.0",
            "lat, [1]",
            "10.0",
        ])
        with pytest.raises(MalformedUpstreamResponse, match="lon"):
            parse_wind_ascii(body)

    def test_missing_plane(self, opendap_ascii):
        body = opendap_ascii(LATS, LONS, {"ugrd10m": U_ROWS})
        with pytest.raises(MalformedUpstreamResponse, match="vgrd10m"):
            parse_wind_ascii(body)

    def test_plane_size_mismatch(self, opendap_ascii):
        short_rows = [row[:3] for row in U_ROWS]
        body = opendap_ascii(LATS, LONS, {"ugrd10m": short_rows, "vgrd10m": V_ROWS})
        with pytest.raises(MalformedUpstreamResponse, match="expected"):
            parse_wind_ascii(body)

    def test_empty_body(self):
        with pytest.raises(MalformedUpstreamResponse):
            parse_opendap_ascii("", ("pratesfc",))


class TestErrorDocuments:

    def test_html_detected(self):
        assert is_error_document(ERROR_PAGE)
        assert is_error_document("  <?xml version='1.0'?><Error/>")
        assert is_error_document("Error page follows <!DOCTYPE html>")

    def test_ascii_not_detected(self, opendap_ascii):
        body = opendap_ascii(LATS, LONS, {"pratesfc": U_ROWS})
        assert not is_error_document(body)

    def test_message_from_first_bold_span(self):
        assert extract_opendap_error(ERROR_PAGE) == (
            "GrADS Data Server: gfs20260121/gfs_0p50_06z is not an available dataset"
        )

    def test_unknown_message_without_bold_span(self):
        assert extract_opendap_error("<html><body>oops</body></html>") == UNKNOWN_OPENDAP_ERROR

    def test_raise_carries_label(self):
        with pytest.raises(UpstreamDatasetUnavailable) as exc_info:
            raise_for_error_document(ERROR_PAGE, label="west")

        assert exc_info.value.label == "west"
        assert str(exc_info.value).startswith("OpenDAP error (west): GrADS Data Server")

    def test_raise_is_noop_for_data(self, opendap_ascii):
        raise_for_error_document(opendap_ascii(LATS, LONS, {"pratesfc": U_ROWS}))
