"""
Parser for OpenDAP ``.ascii`` responses from the NOMADS GFS dataset.

A response for ``ugrd10m[t][y0:y1][x0:x1],lat[y0:y1],lon[x0:x1]`` looks like::

    ugrd10m, [1][3][4]
    [0][0], 1.1, 1.2, 1.3, 1.4
    [0][1], 2.1, 2.2, 2.3, 2.4
    [0][2], 3.1, 3.2, 3.3, 3.4

    time, [1]
    738000.0
    lat, [3]
    -90.0, -89.5, -89.0
    lon, [4]
    0.0, 0.5, 1.0, 1.5

Each gridded variable repeats its map vectors (time/lat/lon) after the data,
so only the first ``lat``/``lon`` section is read.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from windcache.data.models import ParsedGrid
from windcache.errors import MalformedUpstreamResponse, UpstreamDatasetUnavailable

logger = logging.getLogger(__name__)

WIND_VARIABLES = ("ugrd10m", "vgrd10m")
PRECIPITATION_VARIABLES = ("pratesfc",)

_AXES = ("lat", "lon")
_INDEX_PREFIX = re.compile(r"^(?:\[\d+\]\s*)+,?")
_NUMBER_SPLIT = re.compile(r"[,\s]+")
_ERROR_SPAN = re.compile(r"<b>(.*?)</b>", re.IGNORECASE | re.DOTALL)

UNKNOWN_OPENDAP_ERROR = "Unknown OpenDAP error"


def _starts_section(line: str, name: str) -> bool:
    return line.startswith(f"{name},") or line.startswith(f"{name}[")


def extract_numbers(text: str) -> List[float]:
    """Comma/whitespace separated floats; unparseable tokens are dropped."""
    values = []
    for token in _NUMBER_SPLIT.split(text.strip()):
        if not token:
            continue
        try:
            values.append(float(token))
        except ValueError:
            continue
    return values


def extract_numbers_from_indexed_line(line: str) -> List[float]:
    """Strip the leading ``[i][j],`` grid index and parse the rest."""
    return extract_numbers(_INDEX_PREFIX.sub("", line.strip(), count=1))


def is_error_document(body: str) -> bool:
    """True when the body is an HTML/XML error page rather than tabular data."""
    stripped = body.lstrip()
    return stripped.startswith("<") or "<!DOCTYPE" in body or "<html" in body


def extract_opendap_error(body: str) -> str:
    """Human readable message from an OpenDAP error page (first <b>...</b> span)."""
    match = _ERROR_SPAN.search(body)
    if match:
        text = " ".join(match.group(1).split())
        if text:
            return text
    return UNKNOWN_OPENDAP_ERROR


def raise_for_error_document(body: str, label: Optional[str] = None) -> None:
    if is_error_document(body):
        raise UpstreamDatasetUnavailable(extract_opendap_error(body), label=label)


def parse_opendap_ascii(ascii_data: str, variables: Sequence[str]) -> ParsedGrid:
    """
    Parse an ASCII response into a :class:`ParsedGrid`.

    Args:
        ascii_data: Response body.
        variables: Gridded variable names expected in the response
            (e.g. ``("ugrd10m", "vgrd10m")``).

    Raises:
        MalformedUpstreamResponse: An axis or plane is empty or the plane
            sizes do not match the axes.
    """
    axes: Dict[str, List[float]] = {name: [] for name in _AXES}
    planes: Dict[str, List[float]] = {name: [] for name in variables}
    seen = set()

    current: Optional[str] = None
    in_data_section = False

    for line in ascii_data.splitlines():
        trimmed = line.strip()

        header = next(
            (name for name in (*_AXES, *variables) if _starts_section(trimmed, name)),
            None,
        )
        if header is not None:
            if header in seen:
                current = None
                in_data_section = False
            else:
                seen.add(header)
                current = header
                # axes carry bare values; 3-D planes wait for [i][j] rows
                in_data_section = header in _AXES
            continue

        if _starts_section(trimmed, "time"):
            current = None
            in_data_section = False
            continue

        if not trimmed:
            continue

        if trimmed.startswith("["):
            in_data_section = True
            if current in planes:
                planes[current].extend(extract_numbers_from_indexed_line(trimmed))
            continue

        if in_data_section and not trimmed[0].isalpha():
            numbers = extract_numbers(trimmed)
            if current in axes:
                axes[current].extend(numbers)
            elif current in planes:
                planes[current].extend(numbers)

    counts = ", ".join(f"{name}={len(values)}" for name, values in {**axes, **planes}.items())
    logger.info(f"Parsed OpenDAP response: {counts}")

    empty = [name for name, values in {**axes, **planes}.items() if not values]
    if empty:
        raise MalformedUpstreamResponse(f"Invalid parsed data ({counts}); empty: {', '.join(empty)}")

    return ParsedGrid(latitudes=axes["lat"], longitudes=axes["lon"], planes=planes)


def parse_wind_ascii(ascii_data: str) -> ParsedGrid:
    return parse_opendap_ascii(ascii_data, WIND_VARIABLES)


def parse_precipitation_ascii(ascii_data: str) -> ParsedGrid:
    return parse_opendap_ascii(ascii_data, PRECIPITATION_VARIABLES)
