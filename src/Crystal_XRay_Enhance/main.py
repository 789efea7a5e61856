import logging
import sys

import cv2
import matplotlib.pyplot as plt

from .config import EnhancementConfig, OPTIMAL
from .errors import InvalidArgumentError
from .fields import validate_u16
from .filters import enhance, enhance_dicom_pixels
from .metrics import assess_quality, sharpness_report
from .parallel import check_cancelled, configure_opencv_threads
from .windowing import compress_dynamic_range

logger = logging.getLogger(__name__)


def load_image(path):
    """Read a 16-bit single-channel image (TIFF/PNG) without conversion."""
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise InvalidArgumentError(f"Could not read image: {path}")
    return validate_u16(image, str(path))


def run_pipeline(image, enhancement=None, windowing=None, invert=False, workers=None, cancel=None):
    """
    Enhance one image, render both versions for display and score the result.
    - image: uint16 single-channel image
    - enhancement: EnhancementConfig
    - windowing: WindowingConfig for the 8-bit renderings
    - invert: treat the input as raw (negative) DICOM pixel data
    - cancel: optional event, checked between stages
    """
    validate_u16(image)
    windowing = windowing or OPTIMAL

    # 1) Enhancement
    if invert:
        original, enhanced = enhance_dicom_pixels(image, enhancement, workers=workers, cancel=cancel)
    else:
        original = image
        enhanced = enhance(image, enhancement or EnhancementConfig(), workers=workers, cancel=cancel)

    # 2) 8-bit renderings
    check_cancelled(cancel, "display conversion")
    original_display = compress_dynamic_range(original, windowing, workers=workers)
    enhanced_display = compress_dynamic_range(enhanced, windowing, workers=workers)

    # 3) Metrics
    check_cancelled(cancel, "quality assessment")
    metrics = assess_quality(original, enhanced)
    logger.info("PSNR=%.4f dB, SSIM=%.4f, SF %.2f -> %.2f",
                metrics.psnr, metrics.ssim, metrics.sf_original, metrics.sf_processed)
    report = sharpness_report(original, enhanced)

    return {
        "original": original,
        "enhanced": enhanced,
        "original_display": original_display,
        "enhanced_display": enhanced_display,
        "metrics": metrics,
        "report": report,
    }


def plot_comparison(result):
    fig, ax = plt.subplots(1, 2, figsize=(12, 5))
    ax[0].imshow(result["original_display"], cmap='gray', vmin=0, vmax=255)
    ax[0].set_title("Original"); ax[0].axis('off')
    ax[1].imshow(result["enhanced_display"], cmap='gray', vmin=0, vmax=255)
    ax[1].set_title(f"Enhanced (SSIM {result['metrics'].ssim:.4f})"); ax[1].axis('off')
    fig.tight_layout()
    return fig


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("usage: python -m Crystal_XRay_Enhance.main IMAGE [STRENGTH] [LEVELS]")
        return 2

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    configure_opencv_threads()

    image = load_image(argv[0])
    config = EnhancementConfig(
        strength=float(argv[1]) if len(argv) > 1 else 5.0,
        scale_levels=int(argv[2]) if len(argv) > 2 else 3,
    )
    result = run_pipeline(image, config)

    plot_comparison(result)
    plt.show()
    return 0


if __name__ == "__main__":
    sys.exit(main())
