import numbers
from dataclasses import dataclass
from typing import Tuple

from .errors import InvalidArgumentError

MIN_SCALE_LEVELS = 2
MAX_SCALE_LEVELS = 5


@dataclass(frozen=True)
class EnhancementConfig:
    """Multiscale enhancement parameters"""

    # Global detail gain, typically 3-10
    strength: float = 3.25
    # Requested levels; the effective count is clamped to [2, 5]
    scale_levels: int = 3

    def __post_init__(self):
        if not self.strength > 0:
            raise InvalidArgumentError(f"strength must be positive, got {self.strength}")
        if isinstance(self.scale_levels, bool) or not isinstance(self.scale_levels, numbers.Integral):
            raise InvalidArgumentError(f"scale_levels must be an integer, got {self.scale_levels!r}")

    @property
    def effective_levels(self):
        return min(MAX_SCALE_LEVELS, max(self.scale_levels, MIN_SCALE_LEVELS))

    @classmethod
    def dicom_default(cls):
        """Defaults used for raw DICOM acquisitions (strength range 5-10)."""
        return cls(strength=7.5, scale_levels=3)


@dataclass(frozen=True)
class WindowingConfig:
    """16-bit to 8-bit conversion parameters"""

    # Window level/width estimation
    lower_percentile: float = 0.5      # excludes dark noise
    upper_percentile: float = 99.5     # excludes bright saturation
    min_window_width: int = 2000
    max_window_width: int = 0          # 0 = unlimited
    use_block_statistics: bool = True  # robust to uneven exposure

    # LUT shaping
    gamma_correction: float = 1.1
    contrast_enhancement: float = 0.15

    # Post-processing
    apply_post_processing: bool = True
    use_local_contrast: bool = True
    clip_limit: float = 2.5
    tile_grid: Tuple[int, int] = (8, 8)
    sharpening_amount: float = 0.2
    noise_reduction: int = 1           # 0-3

    enable_logging: bool = True

    def __post_init__(self):
        if not 0.0 <= self.lower_percentile < self.upper_percentile <= 100.0:
            raise InvalidArgumentError(
                f"percentiles must satisfy 0 <= lower < upper <= 100, "
                f"got {self.lower_percentile}/{self.upper_percentile}")
        if self.min_window_width < 0 or self.max_window_width < 0:
            raise InvalidArgumentError("window widths must be non-negative")
        if not self.gamma_correction > 0:
            raise InvalidArgumentError(f"gamma_correction must be positive, got {self.gamma_correction}")
        if self.contrast_enhancement < 0 or self.sharpening_amount < 0:
            raise InvalidArgumentError("contrast_enhancement and sharpening_amount must be non-negative")
        if isinstance(self.noise_reduction, bool) or not isinstance(self.noise_reduction, numbers.Integral):
            raise InvalidArgumentError(f"noise_reduction must be an integer, got {self.noise_reduction!r}")
        if not 0 <= self.noise_reduction <= 3:
            raise InvalidArgumentError(f"noise_reduction must be in [0, 3], got {self.noise_reduction}")
        if len(self.tile_grid) != 2 or min(self.tile_grid) <= 0:
            raise InvalidArgumentError(f"tile_grid must be two positive integers, got {self.tile_grid}")


# Optimised for industrial X-ray images
OPTIMAL = WindowingConfig()

HIGH_QUALITY = WindowingConfig(
    lower_percentile=0.2,
    upper_percentile=99.8,
    min_window_width=1000,
    gamma_correction=1.05,
    contrast_enhancement=0.1,
    clip_limit=2.0,
    tile_grid=(12, 12),
    sharpening_amount=0.1,
    noise_reduction=2,
)

# Speed first: histogram strategy, no post-processing
FAST = WindowingConfig(
    lower_percentile=2.0,
    upper_percentile=98.0,
    min_window_width=5000,
    use_block_statistics=False,
    gamma_correction=1.0,
    contrast_enhancement=0.0,
    apply_post_processing=False,
    enable_logging=False,
)

PRESETS = {
    "fast": FAST,
    "optimal": OPTIMAL,
    "high_quality": HIGH_QUALITY,
}


def get_preset(name):
    try:
        return PRESETS[name.lower()]
    except KeyError:
        raise InvalidArgumentError(f"Unknown preset '{name}'. Choose from {sorted(PRESETS)}") from None
