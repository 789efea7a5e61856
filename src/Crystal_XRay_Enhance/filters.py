import logging
import math
import time

import cv2
import numpy as np

from .config import EnhancementConfig, MAX_SCALE_LEVELS, MIN_SCALE_LEVELS
from .errors import ComputationError
from .fields import invert_polarity, normalize, to_u16, validate_u16
from .parallel import check_cancelled, run_rows

logger = logging.getLogger(__name__)

EPS = 1e-8
# Bilateral range sigma in normalized [0, 1] units
BILATERAL_SIGMA = 0.1


def crystal_field(field, x, y, radius):
    """
    Lattice energy and growth gradient for a single pixel.
    Reference form of the kernel; multiscale_decompose uses the vectorised
    crystal_field_rows, which must agree with it pixel for pixel.
    - field: normalized float image
    - x, y: pixel position
    - radius: Chebyshev neighbourhood radius, clipped to the image bounds
    Returns (growth_rate, gradient):
      growth_rate = mean of exp(-(c - v)^2) over the neighbourhood
      gradient    = sum((v - c) * energy) / (sum(energy) + eps)
    """
    H, W = field.shape
    x0, x1 = max(x - radius, 0), min(x + radius, W - 1)
    y0, y1 = max(y - radius, 0), min(y + radius, H - 1)

    c = float(field[y, x])
    energy_sum = 0.0
    gradient_sum = 0.0
    count = 0
    for ny in range(y0, y1 + 1):
        for nx in range(x0, x1 + 1):
            v = float(field[ny, nx])
            energy = math.exp(-(c - v) ** 2)
            energy_sum += energy
            gradient_sum += (v - c) * energy
            count += 1

    return energy_sum / count, gradient_sum / (energy_sum + EPS)


def crystal_field_rows(field, y0, y1, radius):
    """
    Vectorised crystal_field for every pixel of rows [y0, y1).
    Neighbours outside the image are masked out, so each pixel sees exactly
    the clipped neighbourhood of the single-pixel form, visited in the same
    row-major order.
    Returns (growth_rate, gradient), float32 arrays of shape (y1 - y0, W).
    """
    H, W = field.shape
    r = radius
    h = y1 - y0

    # Local window with an r-pixel zero border and a matching validity mask
    src_y0, src_y1 = max(y0 - r, 0), min(y1 + r, H)
    off = src_y0 - (y0 - r)
    pad = np.zeros((h + 2 * r, W + 2 * r), np.float32)
    valid = np.zeros_like(pad)
    pad[off:off + src_y1 - src_y0, r:r + W] = field[src_y0:src_y1]
    valid[off:off + src_y1 - src_y0, r:r + W] = 1.0

    c = field[y0:y1].astype(np.float32, copy=False)
    energy_sum = np.zeros((h, W), np.float32)
    gradient_sum = np.zeros((h, W), np.float32)
    count = np.zeros((h, W), np.float32)

    for dy in range(2 * r + 1):
        for dx in range(2 * r + 1):
            v = pad[dy:dy + h, dx:dx + W]
            m = valid[dy:dy + h, dx:dx + W]
            diff = c - v
            energy = np.exp(-(diff * diff)) * m
            energy_sum += energy
            gradient_sum += (v - c) * energy
            count += m

    growth = energy_sum / count
    gradient = gradient_sum / (energy_sum + np.float32(EPS))
    return growth, gradient


class ScaleBuffers:
    """
    Owns the two ping-pong base buffers and the detail accumulator of one
    decomposition run. `current` is read, `next` is written, then swap().
    """

    def __init__(self, normalized):
        self.current = np.array(normalized, dtype=np.float32, copy=True)
        self.next = np.zeros_like(self.current)
        self.detail = np.zeros_like(self.current)

    def swap(self):
        self.current, self.next = self.next, self.current


def multiscale_decompose(normalized, strength, levels, workers=None, cancel=None):
    """
    Multiscale anisotropic diffusion.
    - normalized: float image in [0, 1]
    - strength: global detail gain
    - levels: requested level count, clamped to [2, 5]
    - workers: row worker count (None = all cores)
    - cancel: optional event checked before every level
    Level L uses radius 1 + L and weights its detail by ((L + 1) / levels)^2,
    so deeper (coarser) levels contribute more.
    Returns (base, detail) float32 fields.
    """
    levels = min(MAX_SCALE_LEVELS, max(levels, MIN_SCALE_LEVELS))
    buffers = ScaleBuffers(normalized)
    H = buffers.current.shape[0]

    for level in range(levels):
        check_cancelled(cancel, f"scale level {level}")
        radius = 1 + level
        gain = np.float32(strength * ((level + 1) / levels) ** 2)
        cur, nxt, detail = buffers.current, buffers.next, buffers.detail

        def rows(y0, y1):
            growth, gradient = crystal_field_rows(cur, y0, y1, radius)
            c = cur[y0:y1]
            base = c + gradient
            local_detail = (c - base) * growth
            detail[y0:y1] += gain * local_detail
            nxt[y0:y1] = base

        # Every row of this level completes before the next level reads it
        run_rows(H, rows, workers)
        buffers.swap()

    return buffers.current, buffers.detail


def reconstruct(base, detail):
    """
    Edge-preserving recombination of base + detail into a uint16 image.
    The base layer is bilateral filtered (kernel size derived by OpenCV from
    sigmaSpace) to suppress over-sharpened artifacts before the detail is added.
    """
    filtered = cv2.bilateralFilter(np.ascontiguousarray(base, dtype=np.float32), 0,
                                   BILATERAL_SIGMA, BILATERAL_SIGMA)
    return to_u16(filtered + detail)


def enhance(field, config=None, workers=None, cancel=None):
    """
    Enhance a 16-bit X-ray image.
    - field: uint16 single-channel image
    - config: EnhancementConfig (default strength 3.25, 3 levels)
    - workers: row worker count
    - cancel: optional threading.Event-like object
    Returns a new uint16 image of the same shape.
    """
    validate_u16(field)
    config = config or EnhancementConfig()
    H, W = field.shape
    levels = config.effective_levels

    t0 = time.perf_counter()
    normalized = normalize(field, workers)
    try:
        base, detail = multiscale_decompose(normalized, config.strength, levels,
                                            workers=workers, cancel=cancel)
        check_cancelled(cancel, "reconstruction")
        result = reconstruct(base, detail)
    except (cv2.error, ArithmeticError, MemoryError) as exc:
        raise ComputationError(f"Enhancement failed for {W}x{H} image: {exc}") from exc

    logger.info("Enhanced %dx%d image: strength=%.2f, levels=%d, elapsed=%.0fms",
                W, H, config.strength, levels, (time.perf_counter() - t0) * 1000)
    return result


def enhance_dicom_pixels(field, config=None, workers=None, cancel=None):
    """
    Enhancement entry for raw DICOM pixel data, which is acquired in
    inverted polarity. The samples are converted to positive (65535 - value)
    once, then enhanced.
    Returns (inverted, enhanced); packaging into a DICOM object is left to
    the caller.
    """
    validate_u16(field)
    config = config or EnhancementConfig.dicom_default()

    inverted = invert_polarity(field, workers)
    check_cancelled(cancel, "enhancement")
    enhanced = enhance(inverted, config, workers=workers, cancel=cancel)
    return inverted, enhanced
