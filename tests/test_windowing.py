"""
Unit tests for 16-bit to 8-bit dynamic range compression

Tests window estimation (histogram and block strategies), LUT construction,
LUT application and the 8-bit post-processing chain.
"""

import cv2
import numpy as np
import pytest

from Crystal_XRay_Enhance.config import FAST, HIGH_QUALITY, OPTIMAL, WindowingConfig
from Crystal_XRay_Enhance.errors import FormatError, InvalidArgumentError
from Crystal_XRay_Enhance.windowing import (
    Window,
    adjust_bounds,
    apply_lut,
    block_window,
    build_lut,
    compress_dynamic_range,
    constrain_width,
    denoise,
    estimate_window,
    histogram_window,
    local_contrast,
    post_process,
    sharpen,
)

LINEAR = WindowingConfig(gamma_correction=1.0, contrast_enhancement=0.0)


class TestWindowBounds:
    """Test span enforcement, safety margin and width constraints"""

    def test_minimum_span_recentres(self):
        assert adjust_bounds(1000, 1100, 0, 60000) == (0, 2677)

    def test_safety_margin_only(self):
        # span 10000 >= 5% of 20000; margin int(10000 * 0.05)
        assert adjust_bounds(20000, 30000, 15000, 35000) == (19500, 30500)

    def test_clamped_to_u16(self):
        low, high = adjust_bounds(0, 65535, 0, 65535)
        assert (low, high) == (0, 65535)

    def test_constrain_width(self):
        assert constrain_width(10, OPTIMAL) == 2000
        assert constrain_width(50000, OPTIMAL) == 50000
        capped = WindowingConfig(max_window_width=30000)
        assert constrain_width(50000, capped) == 30000


class TestHistogramWindow:
    """Test the percentile strategy"""

    def test_two_level_image(self):
        image = np.full((100, 100), 10000, dtype=np.uint16)
        image[50:] = 30000
        window = histogram_window(image, 10000.0, 30000.0, FAST)

        assert window.low < 10000
        assert window.high > 30000
        assert window.low < window.level < window.high
        assert window.width == window.high - window.low

    def test_two_level_image_exact(self):
        """Bins 624 / 1876 (one bin wider each side) map back to 9986 / 30022 before adjustment"""
        image = np.full((100, 100), 10000, dtype=np.uint16)
        image[50:] = 30000
        window = histogram_window(image, 10000.0, 30000.0, FAST)
        # margin int(20036 * 0.05) = 1001 on each side
        assert window == Window(level=20004, width=22038, low=8985, high=31023)

    def test_full_range_percentiles_clamp_bins(self):
        """0%/100% select the first and the last bin"""
        image = np.full((100, 100), 10000, dtype=np.uint16)
        image[50:] = 30000
        config = WindowingConfig(lower_percentile=0.0, upper_percentile=100.0,
                                 min_window_width=0, use_block_statistics=False)
        window = histogram_window(image, 10000.0, 30000.0, config)
        assert window == Window(level=32767, width=65535, low=0, high=65535)

    def test_outliers_excluded(self):
        """A handful of extreme pixels falls outside the 2%/98% window"""
        image = np.full((100, 100), 20000, dtype=np.uint16)
        image[0, :10] = 0
        image[99, :10] = 65535
        window = histogram_window(image, 0.0, 65535.0, FAST)
        assert window.low > 0
        assert window.high < 65535


class TestBlockWindow:
    """Test the tile-statistics strategy"""

    def test_constant_image(self):
        image = np.full((300, 300), 20000, dtype=np.uint16)
        window = block_window(image, 20000.0, 20000.0, OPTIMAL)
        assert window == Window(level=20000, width=2000, low=20000, high=20000)

    def test_uneven_exposure(self, xray_image):
        gmin, gmax = float(xray_image.min()), float(xray_image.max())
        window = block_window(xray_image, gmin, gmax, OPTIMAL)
        assert 0 <= window.low <= window.level <= window.high <= 65535
        assert window.width >= OPTIMAL.min_window_width

    def test_estimate_window_dispatch(self, xray_image):
        gmin, gmax = float(xray_image.min()), float(xray_image.max())
        assert estimate_window(xray_image, OPTIMAL) == block_window(xray_image, gmin, gmax, OPTIMAL)
        assert estimate_window(xray_image, FAST) == histogram_window(xray_image, gmin, gmax, FAST)


class TestBuildLUT:
    """Test LUT construction"""

    def test_piecewise_linear(self):
        lut = build_lut(32768, 20000, LINEAR)
        lower, upper = 22768, 42768

        assert lut.shape == (65536,)
        assert lut.dtype == np.uint8
        assert np.all(lut[:lower + 1] == 0)
        assert np.all(lut[upper:] == 255)
        assert lut[32768] in (127, 128)

        i = np.arange(lower + 1, upper)
        expected = np.rint((i - lower) / (upper - lower) * 255)
        np.testing.assert_array_equal(lut[lower + 1:upper], expected)

    def test_monotonic(self):
        lut = build_lut(30000, 12000, OPTIMAL)
        assert np.all(np.diff(lut.astype(np.int16)) >= 0)

    def test_read_only(self):
        lut = build_lut(30000, 12000, OPTIMAL)
        with pytest.raises(ValueError):
            lut[0] = 1

    def test_contrast_curve_range(self):
        """Inside the window the S-curve maps into [0.25, 0.75] of the display range"""
        lut = build_lut(32768, 20000, WindowingConfig(gamma_correction=1.0, contrast_enhancement=0.15))
        inner = lut[22769:42768]
        assert inner.min() >= 63
        assert inner.max() <= 192

    def test_gamma_darkens_midtones(self):
        linear = build_lut(32768, 20000, LINEAR)
        gamma = build_lut(32768, 20000, WindowingConfig(gamma_correction=1.5, contrast_enhancement=0.0))
        assert gamma[32768] < linear[32768]

    def test_gamma_within_tolerance_ignored(self):
        near_one = WindowingConfig(gamma_correction=1.005, contrast_enhancement=0.0)
        np.testing.assert_array_equal(build_lut(32768, 20000, near_one),
                                      build_lut(32768, 20000, LINEAR))

    def test_degenerate_width(self):
        lut = build_lut(0, 0, LINEAR)
        assert lut[0] == 0
        assert np.all(lut[1:] == 255)

    def test_window_pinned_at_top(self):
        """lower == upper == 65535 builds without dividing by zero"""
        with np.errstate(all="raise"):
            lut = build_lut(65535, 1, OPTIMAL)
        assert not np.any(lut)


class TestApplyLUT:
    """Test the row-parallel gather"""

    @pytest.mark.parametrize("workers", [1, 3])
    def test_matches_indexing(self, xray_image, workers):
        lut = build_lut(25000, 30000, OPTIMAL)
        out = apply_lut(xray_image, lut, workers)
        assert out.dtype == np.uint8
        np.testing.assert_array_equal(out, lut[xray_image])


class TestPostProcessing:
    """Test the 8-bit enhancement chain"""

    def test_local_contrast_skips_flat_image(self):
        image = np.full((32, 32), 7, dtype=np.uint8)
        np.testing.assert_array_equal(local_contrast(image), 7)

    def test_local_contrast_in_place(self):
        rng = np.random.default_rng(5)
        image = rng.integers(60, 120, size=(64, 64), dtype=np.uint8)
        expected = cv2.createCLAHE(clipLimit=2.5, tileGridSize=(8, 8)).apply(image)
        out = local_contrast(image, 2.5, (8, 8))
        assert out is image
        np.testing.assert_array_equal(image, expected)

    def test_sharpen_in_place(self):
        rng = np.random.default_rng(6)
        image = rng.integers(0, 255, size=(32, 32), dtype=np.uint8)
        blurred = cv2.GaussianBlur(image, (0, 0), 1.0)
        expected = cv2.addWeighted(image, 1.2, blurred, -0.2, 0)
        out = sharpen(image, 0.2)
        assert out is image
        np.testing.assert_array_equal(image, expected)

    @pytest.mark.parametrize("strength,ksize", [(1, 3), (2, 5), (3, 7)])
    def test_denoise_kernel(self, strength, ksize):
        rng = np.random.default_rng(strength)
        image = rng.integers(0, 255, size=(32, 32), dtype=np.uint8)
        expected = cv2.medianBlur(image, ksize)
        np.testing.assert_array_equal(denoise(image, strength), expected)

    def test_all_disabled_is_identity(self):
        rng = np.random.default_rng(9)
        image = rng.integers(0, 255, size=(16, 16), dtype=np.uint8)
        before = image.copy()
        config = WindowingConfig(use_local_contrast=False, sharpening_amount=0.0, noise_reduction=0)
        np.testing.assert_array_equal(post_process(image, config), before)


class TestCompressDynamicRange:
    """Test the public conversion entry point"""

    @pytest.mark.parametrize("config", [OPTIMAL, HIGH_QUALITY, FAST])
    def test_presets(self, xray_image, config):
        out = compress_dynamic_range(xray_image, config)
        assert out.dtype == np.uint8
        assert out.shape == xray_image.shape

    def test_default_config(self, xray_image):
        np.testing.assert_array_equal(compress_dynamic_range(xray_image),
                                      compress_dynamic_range(xray_image, OPTIMAL))

    def test_all_zero_image(self):
        out = compress_dynamic_range(np.zeros((64, 64), dtype=np.uint16))
        assert out.dtype == np.uint8
        assert not np.any(out)

    def test_saturated_image_without_width_floor(self):
        image = np.full((8, 8), 65535, dtype=np.uint16)
        config = WindowingConfig(min_window_width=0)
        with np.errstate(all="raise"):
            out = compress_dynamic_range(image, config)
        assert out.dtype == np.uint8
        assert not np.any(out)

    def test_fast_is_plain_lut(self, xray_image):
        window = estimate_window(xray_image, FAST)
        lut = build_lut(window.level, window.width, FAST)
        np.testing.assert_array_equal(compress_dynamic_range(xray_image, FAST), lut[xray_image])

    def test_does_not_mutate_input(self, xray_image):
        before = xray_image.copy()
        compress_dynamic_range(xray_image)
        np.testing.assert_array_equal(xray_image, before)

    def test_rejects_8bit(self):
        with pytest.raises(FormatError):
            compress_dynamic_range(np.zeros((8, 8), dtype=np.uint8))

    def test_rejects_empty(self):
        with pytest.raises(InvalidArgumentError):
            compress_dynamic_range(np.zeros((0, 8), dtype=np.uint16))
