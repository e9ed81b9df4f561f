"""
Image Quality Assessment

Scores a page image from two angles:
- Metadata heuristics (pixel count, declared DPI, source format)
- Content metrics (Laplacian blur, contrast, noise, edges, dynamic range)

The score drives enhancement parameters and the low-quality warning; the
encoded-size proxy ranks enhancement variants.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

LOSSLESS_FORMATS = {"PNG", "TIFF", "BMP"}
LOSSY_FORMATS = {"JPEG", "JPG"}


class DocumentType(Enum):
    """Likely origin of the page image"""
    DIGITAL_BORN = "digital_born"               # Screenshot or exported page
    SCAN_HIGH_QUALITY = "scan_high_quality"
    SCAN_LOW_QUALITY = "scan_low_quality"
    PHOTO_GOOD_LIGHTING = "photo_good_lighting"
    PHOTO_POOR_LIGHTING = "photo_poor_lighting"
    BLANK = "blank"                             # Near-uniform, nothing to read
    UNKNOWN = "unknown"


@dataclass
class ImageQualityMetrics:
    """
    Content metrics for a greyscale page.

    Attributes:
        blur_score: Laplacian variance (higher = sharper, <100 = blurry)
        contrast_score: Standard deviation of intensities
        contrast_ratio: std/mean, brightness-independent contrast
        noise_level: Std dev of the residual after a 5x5 median filter
        edge_strength: Mean Sobel gradient magnitude
        brightness: Mean intensity (0-255)
        dynamic_range: max - min intensity
        document_type: Classified origin
        is_blurry / is_low_contrast / is_noisy: Threshold flags
        is_uniform: Almost no intensity variation (blank or saturated page)
    """
    blur_score: float
    contrast_score: float
    contrast_ratio: float
    noise_level: float
    edge_strength: float
    brightness: float
    dynamic_range: float
    document_type: DocumentType
    is_blurry: bool
    is_low_contrast: bool
    is_noisy: bool
    is_uniform: bool

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for logging/serialization"""
        return {
            "blur_score": round(float(self.blur_score), 3),
            "contrast_score": round(float(self.contrast_score), 3),
            "contrast_ratio": round(float(self.contrast_ratio), 4),
            "noise_level": round(float(self.noise_level), 3),
            "edge_strength": round(float(self.edge_strength), 3),
            "brightness": round(float(self.brightness), 3),
            "dynamic_range": float(self.dynamic_range),
            "document_type": self.document_type.value,
            "is_blurry": self.is_blurry,
            "is_low_contrast": self.is_low_contrast,
            "is_noisy": self.is_noisy,
            "is_uniform": self.is_uniform,
        }


class ImageQualityAnalyzer:
    """
    Computes content metrics and the 0-100 quality score of a page.

    Example:
        analyzer = ImageQualityAnalyzer()
        metrics = analyzer.analyze(gray)
        score = analyzer.quality_score(width, height, dpi, "PNG", metrics)
    """

    UNIFORM_RANGE = 10.0
    UNIFORM_CONTRAST = 5.0

    def __init__(
        self,
        blur_threshold: float = 100.0,
        contrast_threshold: float = 40.0,
        noise_threshold: float = 50.0,
    ):
        """
        Args:
            blur_threshold: Laplacian variance below which the page is blurry
            contrast_threshold: Std dev below which the page is low contrast
            noise_threshold: Residual std dev above which the page is noisy
        """
        self.blur_threshold = blur_threshold
        self.contrast_threshold = contrast_threshold
        self.noise_threshold = noise_threshold

    @classmethod
    def from_config(cls, config) -> "ImageQualityAnalyzer":
        return cls(
            blur_threshold=config.blur_threshold,
            contrast_threshold=config.contrast_threshold,
            noise_threshold=config.noise_threshold,
        )

    def analyze(self, image: np.ndarray) -> ImageQualityMetrics:
        """
        Measure a page image.

        Args:
            image: Greyscale uint8 image (colour input is converted)

        Returns:
            ImageQualityMetrics
        """
        gray = self._as_gray(image)
        if gray is None or gray.size == 0:
            logger.warning("Quality analysis received an empty image, using worst-case metrics")
            return self._default_metrics()

        blur_score = self._laplacian_variance(gray)
        contrast_score = float(np.std(gray))
        mean = float(np.mean(gray))
        contrast_ratio = contrast_score / mean if mean > 0 else 0.0
        noise_level = self._noise_level(gray)
        edge_strength = self._edge_strength(gray)
        dynamic_range = float(np.max(gray)) - float(np.min(gray))

        is_uniform = dynamic_range < self.UNIFORM_RANGE or contrast_score < self.UNIFORM_CONTRAST
        metrics = ImageQualityMetrics(
            blur_score=blur_score,
            contrast_score=contrast_score,
            contrast_ratio=contrast_ratio,
            noise_level=noise_level,
            edge_strength=edge_strength,
            brightness=mean,
            dynamic_range=dynamic_range,
            document_type=self._classify(
                blur_score, contrast_score, noise_level, edge_strength, mean, is_uniform
            ),
            is_blurry=blur_score < self.blur_threshold,
            is_low_contrast=contrast_score < self.contrast_threshold,
            is_noisy=noise_level > self.noise_threshold,
            is_uniform=is_uniform,
        )

        logger.debug(f"Quality metrics: {metrics.to_dict()}")
        return metrics

    def quality_score(
        self,
        width: int,
        height: int,
        dpi: float,
        source_format: str,
        metrics: Optional[ImageQualityMetrics] = None,
    ) -> float:
        """
        Weighted 0-100 quality heuristic.

        Metadata part: base 50, pixel count +20/+10/-20, DPI +15/+5/-10,
        lossless +5 / JPEG +2. Content part penalizes blank, blurry,
        low-contrast and noisy pages.
        """
        score = metadata_score(width, height, dpi, source_format)
        if metrics is not None:
            score += content_adjustment(metrics)
        return float(max(0.0, min(100.0, score)))

    @staticmethod
    def _as_gray(image: np.ndarray) -> Optional[np.ndarray]:
        if image.ndim == 2:
            gray = image
        elif image.ndim == 3 and image.shape[2] == 1:
            gray = image[:, :, 0]
        elif image.ndim == 3 and image.shape[2] in (3, 4):
            code = cv2.COLOR_RGB2GRAY if image.shape[2] == 3 else cv2.COLOR_RGBA2GRAY
            gray = cv2.cvtColor(image, code)
        else:
            logger.warning(f"Unexpected image shape: {image.shape}")
            return None
        return np.ascontiguousarray(gray, dtype=np.uint8)

    @staticmethod
    def _laplacian_variance(gray: np.ndarray) -> float:
        try:
            return float(cv2.Laplacian(gray, cv2.CV_64F).var())
        except cv2.error as e:
            logger.warning(f"Blur score computation failed: {e}")
            return 0.0

    @staticmethod
    def _noise_level(gray: np.ndarray) -> float:
        try:
            median = cv2.medianBlur(gray, 5)
        except cv2.error as e:
            logger.warning(f"Noise level computation failed: {e}")
            return 0.0
        return float(np.std(gray.astype(np.float32) - median.astype(np.float32)))

    @staticmethod
    def _edge_strength(gray: np.ndarray) -> float:
        try:
            gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
            gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
        except cv2.error as e:
            logger.warning(f"Edge strength computation failed: {e}")
            return 0.0
        return float(np.mean(np.sqrt(gx ** 2 + gy ** 2)))

    @staticmethod
    def _classify(
        blur_score: float,
        contrast_score: float,
        noise_level: float,
        edge_strength: float,
        brightness: float,
        is_uniform: bool,
    ) -> DocumentType:
        if is_uniform:
            return DocumentType.BLANK
        if blur_score > 500 and contrast_score > 60 and noise_level < 20 and edge_strength > 40:
            return DocumentType.DIGITAL_BORN
        if blur_score > 200 and contrast_score > 50 and noise_level < 30:
            return DocumentType.SCAN_HIGH_QUALITY
        if (brightness < 80 or brightness > 200) and contrast_score < 45:
            return DocumentType.PHOTO_POOR_LIGHTING
        if blur_score < 60 and contrast_score > 35:
            return DocumentType.PHOTO_POOR_LIGHTING
        if 60 <= blur_score <= 150 and contrast_score > 40:
            return DocumentType.PHOTO_GOOD_LIGHTING
        if blur_score > 50 and contrast_score > 35 and noise_level < 70:
            return DocumentType.SCAN_LOW_QUALITY
        return DocumentType.UNKNOWN

    @staticmethod
    def _default_metrics() -> ImageQualityMetrics:
        return ImageQualityMetrics(
            blur_score=0.0,
            contrast_score=0.0,
            contrast_ratio=0.0,
            noise_level=0.0,
            edge_strength=0.0,
            brightness=0.0,
            dynamic_range=0.0,
            document_type=DocumentType.BLANK,
            is_blurry=True,
            is_low_contrast=True,
            is_noisy=False,
            is_uniform=True,
        )


def metadata_score(width: int, height: int, dpi: float, source_format: str) -> float:
    """Quality points from pixel count, DPI and format alone"""
    score = 50.0

    pixels = width * height
    if pixels > 2_000_000:
        score += 20
    elif pixels > 500_000:
        score += 10
    else:
        score -= 20

    if dpi >= 300:
        score += 15
    elif dpi >= 150:
        score += 5
    else:
        score -= 10

    fmt = (source_format or "").upper()
    if fmt in LOSSLESS_FORMATS:
        score += 5
    elif fmt in LOSSY_FORMATS:
        score += 2

    return score


def content_adjustment(metrics: ImageQualityMetrics) -> float:
    """Quality points removed for what the pixels actually look like"""
    if metrics.is_uniform:
        return -40.0
    adjustment = 0.0
    if metrics.is_blurry:
        adjustment -= 10
    if metrics.is_low_contrast:
        adjustment -= 10
    if metrics.is_noisy:
        adjustment -= 5
    return adjustment


def assess_quality(buffer: bytes, reference_size: int) -> float:
    """
    Cheap relative quality proxy: encoded size against a reference encoding.

    Only meaningful for ranking variants of the same page.
    """
    if reference_size <= 0:
        return 0.0
    return round(len(buffer) / float(reference_size), 6)


def is_low_quality(quality_score: float, threshold: float = 40.0) -> bool:
    """True when a profile's score is low enough to warn the caller"""
    return quality_score < threshold
