"""
Image Normalizer

Decodes an uploaded image, fixes EXIF orientation, converts to greyscale and
brings it into the working resolution band the recognizer handles best.
"""

import io
import logging
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps

from ..config import PipelineConfig
from ..errors import InvalidImage
from ..models import ImageProfile, NormalizedImage, RawImage, ResolutionClass
from .image_quality_analyzer import ImageQualityAnalyzer

logger = logging.getLogger(__name__)

DEFAULT_DPI = 72.0

# Bits per channel by Pillow mode
_BIT_DEPTHS = {"1": 1, "I;16": 16, "I;16B": 16, "I;16L": 16, "I": 32, "F": 32}


class ImageNormalizer:
    """
    Turns raw upload bytes into the greyscale working image and its profile.

    Example:
        normalizer = ImageNormalizer(config)
        normalized, profile = normalizer.normalize(RawImage(data))
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        analyzer: Optional[ImageQualityAnalyzer] = None,
    ):
        self.config = config or PipelineConfig()
        self.analyzer = analyzer or ImageQualityAnalyzer.from_config(self.config)

    def normalize(self, raw: RawImage) -> Tuple[NormalizedImage, ImageProfile]:
        """
        Decode and normalize an image.

        Args:
            raw: Uploaded image bytes

        Returns:
            (NormalizedImage, ImageProfile)

        Raises:
            InvalidImage: If the buffer cannot be decoded or has no pixels
        """
        pil_image, source_format = self._decode(raw.data)

        dpi = self._read_dpi(pil_image)
        channels = len(pil_image.getbands())
        bit_depth = _BIT_DEPTHS.get(pil_image.mode, 8)

        oriented = ImageOps.exif_transpose(pil_image)
        rotated = oriented.size != pil_image.size or self._has_orientation_tag(pil_image)
        width, height = oriented.size

        gray = np.asarray(oriented.convert("L"), dtype=np.uint8)
        working, scale = self._resize(gray)

        metrics = self.analyzer.analyze(working)
        quality_score = self.analyzer.quality_score(width, height, dpi, source_format, metrics)

        profile = ImageProfile(
            width=width,
            height=height,
            channels=channels,
            bit_depth=bit_depth,
            dpi=dpi,
            format=source_format,
            quality_score=quality_score,
            resolution_class=self._classify_resolution(width, height),
            working_width=int(working.shape[1]),
            working_height=int(working.shape[0]),
            metrics=metrics.to_dict(),
        )

        logger.info(
            f"Normalized {source_format or 'image'} {width}x{height} -> "
            f"{profile.working_width}x{profile.working_height} "
            f"(scale={scale:.3f}, dpi={dpi:.0f}, quality={quality_score:.1f})"
        )

        return NormalizedImage(
            image=working,
            scale_factor=scale,
            rotated=rotated,
            source_format=source_format,
        ), profile

    def _decode(self, data: bytes) -> Tuple[Image.Image, str]:
        if not data:
            raise InvalidImage("Image buffer is empty")
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except Exception as e:
            raise InvalidImage(f"Could not decode image: {e}") from e

        if image.width == 0 or image.height == 0:
            raise InvalidImage(f"Image has no pixels ({image.width}x{image.height})")
        return image, (image.format or "").upper()

    @staticmethod
    def _read_dpi(image: Image.Image) -> float:
        dpi = image.info.get("dpi")
        try:
            value = float(dpi[0]) if dpi else 0.0
        except (TypeError, ValueError, IndexError):
            value = 0.0
        return value if value > 0 else DEFAULT_DPI

    @staticmethod
    def _has_orientation_tag(image: Image.Image) -> bool:
        try:
            return image.getexif().get(0x0112, 1) != 1
        except Exception as e:
            logger.debug(f"Could not read EXIF orientation: {e}")
            return False

    def _resize(self, gray: np.ndarray) -> Tuple[np.ndarray, float]:
        """Downscale oversized pages, upscale undersized ones"""
        h, w = gray.shape[:2]
        cfg = self.config

        if w > cfg.high_res_bound or h > cfg.high_res_bound:
            scale = cfg.max_working_dimension / float(max(w, h))
            interpolation = cv2.INTER_AREA
        elif w < cfg.low_res_width or h < cfg.low_res_height:
            scale = max(
                cfg.low_res_width / float(w),
                cfg.low_res_height / float(h),
                cfg.min_upscale_factor,
            )
            # Thin strips must not grow past the working dimension
            scale = min(scale, max(1.0, cfg.max_working_dimension / float(max(w, h))))
            if scale == 1.0:
                return gray, 1.0
            interpolation = cv2.INTER_CUBIC
        else:
            return gray, 1.0

        new_w = max(1, int(round(w * scale)))
        new_h = max(1, int(round(h * scale)))
        logger.debug(f"Resizing {w}x{h} -> {new_w}x{new_h} (scale={scale:.3f})")
        return cv2.resize(gray, (new_w, new_h), interpolation=interpolation), scale

    def _classify_resolution(self, width: int, height: int) -> ResolutionClass:
        cfg = self.config
        if width > cfg.high_res_bound or height > cfg.high_res_bound:
            return ResolutionClass.HIGH
        if width < cfg.low_res_width or height < cfg.low_res_height:
            return ResolutionClass.LOW
        return ResolutionClass.STANDARD


def normalize(raw: RawImage, config: Optional[PipelineConfig] = None) -> Tuple[NormalizedImage, ImageProfile]:
    """Convenience wrapper around ImageNormalizer.normalize"""
    return ImageNormalizer(config).normalize(raw)
