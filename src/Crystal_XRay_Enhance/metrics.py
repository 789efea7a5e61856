import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np
import pywt
from skimage.measure import shannon_entropy
from skimage.restoration import estimate_sigma

from .errors import DegenerateInputError, ShapeMismatchError
from .fields import U16_MAX, validate_u16

logger = logging.getLogger(__name__)

C1 = (0.01 * U16_MAX) ** 2
C2 = (0.03 * U16_MAX) ** 2


@dataclass(frozen=True)
class QualityMetrics:
    psnr: float
    ssim: float
    sf_original: float
    sf_processed: float


def _validate_pair(original, processed):
    validate_u16(original, "original")
    validate_u16(processed, "processed")
    if original.shape != processed.shape:
        raise ShapeMismatchError(
            f"Image sizes do not match: {original.shape} vs {processed.shape}")
    return original.astype(np.float64), processed.astype(np.float64)


def psnr(original, processed):
    """
    Peak signal-to-noise ratio for 16-bit images (peak 65535).
    Returns inf for identical images.
    """
    a, b = _validate_pair(original, processed)
    mse = np.mean((a - b) ** 2)
    if mse == 0:
        return math.inf
    return float(10 * math.log10(U16_MAX * U16_MAX / mse))


def ssim(original, processed):
    """
    Structural similarity from global image statistics.
    Means, variances and covariance are taken over the whole image
    (denominator N - 1), not over sliding or Gaussian windows.
    The stabilising constants keep the ratio defined for constant images;
    two identical constant images score 1.0.
    """
    a, b = _validate_pair(original, processed)
    n = a.size
    if n < 2:
        raise DegenerateInputError("SSIM needs at least two pixels")

    mu_a, mu_b = a.mean(), b.mean()
    da, db = a - mu_a, b - mu_b
    var_a = np.sum(da * da) / (n - 1)
    var_b = np.sum(db * db) / (n - 1)
    cov = np.sum(da * db) / (n - 1)

    numerator = (2 * mu_a * mu_b + C1) * (2 * cov + C2)
    denominator = (mu_a ** 2 + mu_b ** 2 + C1) * (var_a + var_b + C2)
    return float(numerator / denominator)


def spatial_frequency(image):
    """
    sqrt(RF^2 + CF^2), where the row (horizontal) and column (vertical)
    frequencies are the RMS of first differences normalised by the pixel count.
    """
    validate_u16(image)
    img = image.astype(np.float64)
    n = img.size
    horizontal = math.sqrt(np.sum(np.diff(img, axis=1) ** 2) / n)
    vertical = math.sqrt(np.sum(np.diff(img, axis=0) ** 2) / n)
    return math.sqrt(horizontal ** 2 + vertical ** 2)


def assess_quality(original, processed):
    """PSNR and SSIM of the pair plus the spatial frequency of each image."""
    return QualityMetrics(
        psnr=psnr(original, processed),
        ssim=ssim(original, processed),
        sf_original=spatial_frequency(original),
        sf_processed=spatial_frequency(processed),
    )


def sharpness_report(original, enhanced, n_res=4, wv_filt='db2'):
    """
    Contrast, sharpness and noise of the original vs the enhanced image.
    Logs a two-column table and returns the values as a dict.
    """
    if original.shape != enhanced.shape:
        raise ShapeMismatchError(
            f"Image sizes do not match: {original.shape} vs {enhanced.shape}")

    def rms_contrast(img):
        return float(img.std())

    def tenengrad(img):
        sobel_x = cv2.Sobel(img, cv2.CV_64F, 1, 0)
        sobel_y = cv2.Sobel(img, cv2.CV_64F, 0, 1)
        return float(np.mean(sobel_x ** 2 + sobel_y ** 2))

    def laplacian_variance(img):
        return float(cv2.Laplacian(img.astype(np.float32), cv2.CV_32F).var())

    def michelson_contrast(img):
        I_max, I_min = img.max(), img.min()
        return float((I_max - I_min) / (I_max + I_min + 1e-8))

    def noise_sigma_dwt(img):
        # Per level: median absolute diagonal detail / 0.6745
        cA = img
        ns = []
        for _ in range(n_res):
            cA, (cH, cV, cD) = pywt.dwt2(cA, wv_filt)
            ns.append(float(np.median(np.abs(cD)) / 0.6745))
        return ns

    a = original.astype(np.float64)
    b = enhanced.astype(np.float64)

    rows = [
        ("RMS contrast", rms_contrast(a), rms_contrast(b)),
        ("Tenengrad", tenengrad(a), tenengrad(b)),
        ("Laplacian", laplacian_variance(a), laplacian_variance(b)),
        ("Michelson contrast", michelson_contrast(a), michelson_contrast(b)),
        ("Entropy", float(shannon_entropy(original)), float(shannon_entropy(enhanced))),
        ("Noise sigma", float(estimate_sigma(a, channel_axis=None, average_sigmas=True)),
         float(estimate_sigma(b, channel_axis=None, average_sigmas=True))),
    ]

    logger.info("%-20s%12s -> %-12s", "Metric", "Original", "Enhanced")
    report = {}
    for name, orig_val, enh_val in rows:
        logger.info("%-20s%12.4f -> %-12.4f", name, orig_val, enh_val)
        report[f"{name} (orig)"] = orig_val
        report[f"{name} (enh)"] = enh_val

    ns_original = noise_sigma_dwt(a)
    ns_enhanced = noise_sigma_dwt(b)
    for i, (so, se) in enumerate(zip(ns_original, ns_enhanced), start=1):
        logger.debug("Wavelet noise level %d: %.4f -> %.4f (%+.4f)", i, so, se, se - so)

    report["Original noise sigma"] = ns_original
    report["Enhanced noise sigma"] = ns_enhanced
    report["Increase in noise sigma"] = ns_enhanced[-1] - ns_original[-1]
    return report
