class EnhancementError(Exception):
    """Base class for every error raised by the enhancement pipeline"""

    pass


class InvalidArgumentError(EnhancementError, ValueError):
    """Raised for missing or empty input, non-positive dimensions or bad config values"""

    pass


class FormatError(EnhancementError, TypeError):
    """Raised when a field is not a single-channel 16-bit image"""

    pass


class ShapeMismatchError(EnhancementError, ValueError):
    """Raised when two fields that must be compared differ in size"""

    pass


class DegenerateInputError(EnhancementError, ValueError):
    """Raised when a metric is undefined for the given input (e.g. SSIM of a single pixel)"""

    pass


class ComputationError(EnhancementError, RuntimeError):
    """Wraps an unexpected fault raised while processing an image"""

    pass


class CancelledError(EnhancementError):
    """Raised at a stage boundary once the caller's cancellation event is set"""

    pass
