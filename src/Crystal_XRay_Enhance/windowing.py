import logging
import time
from dataclasses import dataclass

import cv2
import numpy as np

from .config import OPTIMAL
from .errors import ComputationError
from .fields import U16_MAX, validate_u16
from .parallel import run_rows

logger = logging.getLogger(__name__)

LUT_SIZE = 65536
HIST_BINS = 4096
BLOCK_SIZE = 256


@dataclass(frozen=True)
class Window:
    level: int
    width: int
    low: int
    high: int


def adjust_bounds(low, high, global_min, global_max):
    """
    Keep at least 5% of the global range inside the window (re-centred),
    then widen both bounds by a 5% safety margin.
    """
    min_span = int((global_max - global_min) * 0.05)
    if high - low < min_span:
        center = (low + high) // 2
        low = max(int(global_min), center - min_span // 2)
        high = min(int(global_max), center + min_span // 2)

    margin = int((high - low) * 0.05)
    low = max(0, low - margin)
    high = min(U16_MAX, high + margin)
    return low, high


def constrain_width(width, config):
    width = max(width, config.min_window_width)
    if config.max_window_width > 0:
        width = min(width, config.max_window_width)
    return width


def _make_window(low, high, global_min, global_max, config):
    low, high = adjust_bounds(low, high, global_min, global_max)
    level = (low + high) // 2
    width = constrain_width(max(1, high - low), config)
    return Window(level=level, width=width, low=low, high=high)


def histogram_window(image, global_min, global_max, config):
    """
    Percentile window from a 4096-bin histogram over [0, 65536).
    Both bounds are widened by one bin.
    """
    # 16 sample values per bin
    hist = np.bincount((image >> 4).ravel(), minlength=HIST_BINS)
    total = image.size
    lower_count = int(total * config.lower_percentile / 100.0)
    upper_count = int(total * config.upper_percentile / 100.0)

    cum = np.cumsum(hist)
    i = int(np.searchsorted(cum, lower_count, side="left"))
    low_bin = max(0, i - 1)

    cum_top = np.cumsum(hist[::-1])
    j = int(np.searchsorted(cum_top, total - upper_count, side="left"))
    high_bin = min(HIST_BINS - 1, HIST_BINS - 1 - j + 1)

    low = int(low_bin * 65535.0 / (HIST_BINS - 1))
    high = int(high_bin * 65535.0 / (HIST_BINS - 1))
    return _make_window(low, high, global_min, global_max, config)


def block_window(image, global_min, global_max, config):
    """
    Window from 256x256 tile statistics (targets uneven exposure).
    The median tile min/max bound the window; each bound is pulled 30% of
    the way from the global extreme toward the median tile mean.
    """
    H, W = image.shape
    mins, maxs, means = [], [], []
    # Tile counts are small, sequential is fine
    for y in range(0, H, BLOCK_SIZE):
        for x in range(0, W, BLOCK_SIZE):
            tile = image[y:y + BLOCK_SIZE, x:x + BLOCK_SIZE]
            mins.append(float(tile.min()))
            maxs.append(float(tile.max()))
            means.append(float(tile.mean(dtype=np.float64)))

    n = len(mins)
    median_min = sorted(mins)[n // 2]
    median_max = sorted(maxs)[n // 2]
    median_mean = sorted(means)[n // 2]

    lower = max(median_min, global_min + (median_mean - global_min) * 0.3)
    upper = min(median_max, global_max - (global_max - median_mean) * 0.3)
    return _make_window(int(lower), int(upper), global_min, global_max, config)


def estimate_window(image, config=OPTIMAL):
    """Adaptive window level/width using the strategy selected in config."""
    global_min, global_max = float(image.min()), float(image.max())
    if config.use_block_statistics:
        return block_window(image, global_min, global_max, config)
    return histogram_window(image, global_min, global_max, config)


def build_lut(level, width, config=OPTIMAL):
    """
    65536-entry uint8 LUT for a window.
    - level, width: window centre and span in sample units
    - config: gamma and contrast curve settings
    Samples at or below the lower bound map to 0, at or above the upper
    bound to 255. In between, t in (0, 1) is gamma corrected, optionally
    passed through a logistic S-curve and rounded to a byte.
    The returned array is read-only.
    """
    lower = max(0, level - width // 2)
    upper = min(U16_MAX, level + width // 2)
    if upper <= lower:
        upper = min(U16_MAX, lower + 1)

    lut = np.zeros(LUT_SIZE, dtype=np.uint8)
    lut[upper:] = 255
    # Lower bound wins when the window is pinned at 65535
    lut[:lower + 1] = 0

    # Only samples strictly inside the window are interpolated
    if upper - lower > 1:
        i = np.arange(lower + 1, upper, dtype=np.float64)
        t = (i - lower) / (upper - lower)

        if abs(config.gamma_correction - 1.0) > 0.01:
            t = np.power(t, config.gamma_correction)

        k = config.contrast_enhancement
        if k > 0:
            t = 1.0 / (1.0 + np.exp(-k * (t - 0.5) * 10)) * 0.5 + 0.25

        lut[lower + 1:upper] = np.rint(np.clip(t * 255, 0, 255))

    lut.flags.writeable = False
    return lut


def apply_lut(image, lut, workers=None):
    """Row-parallel gather of a uint16 image through a 65536-entry LUT."""
    H, W = image.shape
    out = np.empty((H, W), dtype=np.uint8)

    def rows(y0, y1):
        np.take(lut, image[y0:y1], out=out[y0:y1])

    run_rows(H, rows, workers)
    return out


def local_contrast(image, clip_limit=2.5, tile_grid=(8, 8)):
    """Tiled local contrast equalisation (CLAHE), written back into image."""
    # Constant images have no contrast to redistribute
    if image.min() == image.max():
        return image
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=tuple(tile_grid))
    image[...] = clahe.apply(image)
    return image


def sharpen(image, amount):
    """Unsharp mask: image * (1 + amount) - blurred * amount, in place."""
    blurred = cv2.GaussianBlur(image, (0, 0), 1.0)
    cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0, dst=image)
    return image


def denoise(image, strength):
    """Median filter with kernel 3 + (strength - 1) * 2, in place."""
    ksize = 3 + (strength - 1) * 2
    image[...] = cv2.medianBlur(image, ksize)
    return image


def post_process(image, config=OPTIMAL):
    """
    Optional 8-bit enhancement chain, always in this order:
    local contrast -> sharpening -> noise reduction.
    """
    if config.use_local_contrast:
        local_contrast(image, config.clip_limit, config.tile_grid)
    if config.sharpening_amount > 0:
        sharpen(image, config.sharpening_amount)
    if config.noise_reduction > 0:
        denoise(image, config.noise_reduction)
    return image


def compress_dynamic_range(image, config=None, workers=None):
    """
    Convert a 16-bit X-ray image to 8-bit for display.
    - image: uint16 single-channel image
    - config: WindowingConfig (default: OPTIMAL)
    - workers: row worker count for the LUT gather
    Returns a new uint8 image of the same shape.
    """
    validate_u16(image)
    config = config or OPTIMAL
    H, W = image.shape

    t0 = time.perf_counter()
    try:
        # 1) Adaptive window
        window = estimate_window(image, config)
        # 2) LUT
        lut = build_lut(window.level, window.width, config)
        # 3) Gather
        out = apply_lut(image, lut, workers)
        # 4) Post-processing
        if config.apply_post_processing:
            post_process(out, config)
    except (cv2.error, ArithmeticError, MemoryError) as exc:
        raise ComputationError(f"Image conversion failed: {exc}") from exc

    if config.enable_logging:
        logger.info("Conversion completed: %dx%d, window level=%d, window width=%d, elapsed=%.0fms",
                    W, H, window.level, window.width, (time.perf_counter() - t0) * 1000)
    return out
