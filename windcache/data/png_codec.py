"""
Wind raster codec.

u and v are min/max normalised into the R and G channels of an RGBA PNG
(B=0, A=255).  Clients decode with the min/max values carried in
:class:`~windcache.data.models.WindMetadata`.
"""

import io
import logging
from typing import Sequence, Tuple

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


def normalize_channel(values: np.ndarray, vmin: float, vmax: float) -> np.ndarray:
    """
    Map *values* to 0..255 using a global min/max.

    A degenerate range (``vmax == vmin``) encodes every pixel as 0.
    """
    values = np.asarray(values, dtype=np.float64)
    span = vmax - vmin
    if span == 0 or not np.isfinite(span):
        return np.zeros(values.shape, dtype=np.uint8)
    scaled = np.floor((values - vmin) / span * 255.0 + 0.5)
    return np.clip(scaled, 0, 255).astype(np.uint8)


def encode_wind_png(
    width: int,
    height: int,
    u: Sequence[float],
    v: Sequence[float],
    u_min: float,
    u_max: float,
    v_min: float,
    v_max: float,
) -> bytes:
    """Encode row-major u/v arrays into PNG bytes of size ``width x height``."""
    u_arr = np.asarray(u, dtype=np.float64)
    v_arr = np.asarray(v, dtype=np.float64)
    expected = width * height
    if u_arr.size != expected or v_arr.size != expected:
        raise ValueError(
            f"u/v must hold {width}x{height}={expected} values, got {u_arr.size}/{v_arr.size}"
        )

    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[..., 0] = normalize_channel(u_arr, u_min, u_max).reshape(height, width)
    rgba[..., 1] = normalize_channel(v_arr, v_min, v_max).reshape(height, width)
    rgba[..., 3] = 255

    buf = io.BytesIO()
    Image.fromarray(rgba).save(buf, format="PNG")
    png = buf.getvalue()
    logger.info(f"Encoded {width}x{height} wind PNG ({len(png)} bytes)")
    return png


def decode_wind_png(
    png: bytes,
    u_min: float,
    u_max: float,
    v_min: float,
    v_max: float,
) -> Tuple[int, int, np.ndarray, np.ndarray]:
    """
    Recover approximate u/v from an encoded raster.

    Returns ``(width, height, u, v)`` with u/v flat in row-major order.
    Precision is one quantisation step: ``(max - min) / 255``.
    """
    with Image.open(io.BytesIO(png)) as img:
        rgba = np.asarray(img.convert("RGBA"), dtype=np.float64)
    height, width = rgba.shape[:2]
    u = u_min + rgba[..., 0].ravel() / 255.0 * (u_max - u_min)
    v = v_min + rgba[..., 1].ravel() / 255.0 * (v_max - v_min)
    return width, height, u, v
