"""
Adaptive binarization with Otsu's method.

The threshold is applied below Otsu's optimum so thin strokes survive, and
floored so near-uniform pages do not collapse to a single colour.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)


def intensity_histogram(image: np.ndarray) -> np.ndarray:
    """256-bin histogram of a uint8 image"""
    return np.bincount(np.asarray(image, dtype=np.uint8).ravel(), minlength=256).astype(np.int64)


def otsu_threshold(hist: np.ndarray) -> int:
    """
    Threshold maximizing between-class variance wB*wF*(mB - mF)^2.

    Pixels <= t form the background class. The first maximum wins, so the
    result is deterministic. Empty and single-valued histograms return 0.

    Args:
        hist: 256 bin counts

    Returns:
        Threshold in [0, 255]
    """
    counts = np.asarray(hist, dtype=np.float64)
    total = counts.sum()
    if total <= 0 or np.count_nonzero(counts) < 2:
        return 0

    levels = np.arange(counts.size, dtype=np.float64)
    weight_b = np.cumsum(counts)
    weight_f = total - weight_b
    sum_b = np.cumsum(counts * levels)
    sum_total = sum_b[-1]

    valid = (weight_b > 0) & (weight_f > 0)
    variance = np.zeros_like(counts)
    mean_b = np.divide(sum_b, weight_b, out=np.zeros_like(counts), where=valid)
    mean_f = np.divide(sum_total - sum_b, weight_f, out=np.zeros_like(counts), where=valid)
    variance[valid] = weight_b[valid] * weight_f[valid] * (mean_b[valid] - mean_f[valid]) ** 2

    # argmax returns the first occurrence of the maximum
    return int(np.argmax(variance))


def biased_threshold(threshold: int, bias: float = 0.85, minimum: int = 40) -> int:
    """Lower the Otsu threshold by `bias`, never below `minimum`"""
    return max(int(minimum), int(threshold * bias))


def binarize(image: np.ndarray, bias: float = 0.85, minimum: int = 40) -> np.ndarray:
    """
    Binarize a greyscale image with a biased Otsu threshold.

    Returns:
        uint8 image with values 0 and 255 (pixel > threshold -> 255)
    """
    gray = np.asarray(image, dtype=np.uint8)
    raw = otsu_threshold(intensity_histogram(gray))
    threshold = biased_threshold(raw, bias, minimum)
    logger.debug(f"Otsu threshold {raw} -> applied {threshold}")
    return np.where(gray > threshold, 255, 0).astype(np.uint8)
