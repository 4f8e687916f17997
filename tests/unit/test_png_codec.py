"""
Unit tests for the wind PNG codec.
"""

import io

import numpy as np
import pytest
from PIL import Image

from windcache.data.png_codec import decode_wind_png, encode_wind_png, normalize_channel


def _pixels(png: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(png)) as img:
        assert img.format == "PNG"
        assert img.mode == "RGBA"
        return np.asarray(img)


class TestNormalize:

    def test_extremes_map_to_0_and_255(self):
        out = normalize_channel(np.array([-10.0, 0.0, 10.0]), -10.0, 10.0)
        assert out.tolist() == [0, 128, 255]

    def test_degenerate_range_is_zero(self):
        out = normalize_channel(np.array([5.0, 5.0]), 5.0, 5.0)
        assert out.tolist() == [0, 0]

    def test_out_of_range_clipped(self):
        out = normalize_channel(np.array([-20.0, 20.0]), -10.0, 10.0)
        assert out.tolist() == [0, 255]


class TestEncode:

    def test_channels(self):
        png = encode_wind_png(2, 1, [-10.0, 10.0], [0.0, 5.0], -10.0, 10.0, 0.0, 5.0)
        pixels = _pixels(png)

        assert pixels.shape == (1, 2, 4)
        assert pixels[0, :, 0].tolist() == [0, 255]
        assert pixels[0, :, 1].tolist() == [0, 255]
        assert pixels[0, :, 2].tolist() == [0, 0]
        assert pixels[0, :, 3].tolist() == [255, 255]

    def test_row_major_layout(self):
        u = [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
        png = encode_wind_png(3, 2, u, [0.0] * 6, 0.0, 5.0, 0.0, 1.0)
        pixels = _pixels(png)

        assert pixels.shape == (2, 3, 4)
        assert pixels[0, 0, 0] == 0
        assert pixels[1, 2, 0] == 255

    def test_constant_field(self):
        png = encode_wind_png(2, 2, [3.0] * 4, [1.0, 2.0, 3.0, 4.0], 3.0, 3.0, 1.0, 4.0)
        pixels = _pixels(png)
        assert (pixels[..., 0] == 0).all()
        assert pixels[1, 1, 1] == 255

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            encode_wind_png(3, 3, [0.0] * 8, [0.0] * 9, 0.0, 1.0, 0.0, 1.0)


class TestDecode:

    def test_recovers_within_one_step(self):
        rng = np.random.default_rng(42)
        width, height = 16, 8
        u = rng.uniform(-25.0, 25.0, width * height)
        v = rng.uniform(-15.0, 30.0, width * height)
        u_min, u_max, v_min, v_max = u.min(), u.max(), v.min(), v.max()

        png = encode_wind_png(width, height, u, v, u_min, u_max, v_min, v_max)
        w, h, u_out, v_out = decode_wind_png(png, u_min, u_max, v_min, v_max)

        assert (w, h) == (width, height)
        assert np.max(np.abs(u_out - u)) <= (u_max - u_min) / 255
        assert np.max(np.abs(v_out - v)) <= (v_max - v_min) / 255
