import numpy as np

from .errors import FormatError, InvalidArgumentError
from .parallel import run_rows

U16_MAX = 65535


def validate_u16(field, name="image"):
    """
    Check that `field` is a non-empty single-channel 16-bit image.
    Raises InvalidArgumentError / FormatError, returns the array otherwise.
    """
    if field is None:
        raise InvalidArgumentError(f"{name} is None")
    if not isinstance(field, np.ndarray):
        raise FormatError(f"{name} must be a numpy array, got {type(field).__name__}")
    if field.size == 0 or any(s <= 0 for s in field.shape):
        raise InvalidArgumentError(f"{name} is empty (shape {field.shape})")
    if field.ndim != 2:
        raise FormatError(f"{name} must be single-channel 2-D, got shape {field.shape}")
    if field.dtype != np.uint16:
        raise FormatError(f"{name} must be 16-bit unsigned (uint16), got {field.dtype}")
    return field


def normalize(field, workers=None):
    """
    Map a uint16 field to float32 in [0, 1] (sample / 65535).
    Rows are converted in parallel; the input is not modified.
    """
    validate_u16(field)
    H, W = field.shape
    out = np.empty((H, W), dtype=np.float32)
    scale = np.float32(U16_MAX)

    def rows(y0, y1):
        out[y0:y1] = field[y0:y1].astype(np.float32) / scale

    run_rows(H, rows, workers)
    return out


def invert_polarity(field, workers=None):
    """
    Negative -> positive conversion (65535 - value) for raw acquisitions.
    Applying it twice returns the original samples.
    """
    validate_u16(field)
    H, W = field.shape
    out = np.empty((H, W), dtype=np.uint16)

    def rows(y0, y1):
        np.subtract(U16_MAX, field[y0:y1], out=out[y0:y1], dtype=np.uint16)

    run_rows(H, rows, workers)
    return out


def to_u16(field):
    """Scale a [0, 1] float field to uint16 with rounding and saturation."""
    scaled = np.rint(field.astype(np.float64) * U16_MAX)
    return np.clip(scaled, 0, U16_MAX).astype(np.uint16)
