"""
Shared pytest fixtures for the Crystal_XRay_Enhance tests

Synthetic 16-bit images stand in for detector output so the suite runs
without any image files.
"""

import threading

import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")


# ============================================================================
# Image Fixtures
# ============================================================================


@pytest.fixture
def xray_image():
    """Simulated 16-bit X-ray: bright centre, dark edges, range ~5000-45000, light noise"""
    height, width = 48, 64
    y, x = np.mgrid[:height, :width]
    cy, cx = height / 2, width / 2
    dist = np.sqrt((x - cx) ** 2 + (y - cy) ** 2)
    falloff = np.clip(1.0 - dist / np.sqrt(cx ** 2 + cy ** 2), 0, 1)

    rng = np.random.default_rng(1234)
    image = 5000 + falloff * 40000 + rng.integers(-100, 100, size=(height, width))
    # A dense inclusion to give the image some structure
    image[20:28, 30:38] -= 8000
    return np.clip(image, 0, 65535).astype(np.uint16)


@pytest.fixture
def ramp_4x4():
    """4x4 linear ramp from 0 to 65535 in row-major order"""
    return np.linspace(0, 65535, 16).round().astype(np.uint16).reshape(4, 4)


@pytest.fixture
def all_values_u16():
    """Every possible 16-bit sample exactly once, as a 256x256 image"""
    return np.arange(65536, dtype=np.uint16).reshape(256, 256)


@pytest.fixture
def cancel_event():
    """A cancellation event that is already set"""
    event = threading.Event()
    event.set()
    return event
