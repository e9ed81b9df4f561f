"""
Enhancement Variant Generator

Produces several differently enhanced copies of a normalized page so the
recognizer gets more than one shot at the same content. Each recipe is a
deterministic composition of:
- linear contrast gain
- Gaussian noise reduction (small, bounded sigma)
- unsharp-mask sharpening
- CLAHE local contrast
- biased Otsu binarization

Variants are ordered by a cheap encoded-size proxy; the order only decides
which variants are recognized first.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import cv2
import numpy as np

from ..config import PipelineConfig
from ..models import EnhancementVariant, NormalizedImage
from .binarization import binarize
from .image_quality_analyzer import ImageQualityMetrics, assess_quality

logger = logging.getLogger(__name__)

Metrics = Optional[Union[ImageQualityMetrics, Mapping[str, Any]]]

FALLBACK_VARIANT = "fallback"
MIN_BLUR_SIGMA = 0.3


def encode_png(image: np.ndarray) -> bytes:
    """PNG-encode a uint8 image"""
    ok, buffer = cv2.imencode(".png", image)
    if not ok:
        raise ValueError(f"PNG encoding failed for image of shape {image.shape}")
    return buffer.tobytes()


def to_gray(image: np.ndarray) -> np.ndarray:
    """Greyscale conversion; a no-op for single-channel input"""
    if image.ndim == 2:
        return image
    if image.shape[2] == 1:
        return image[:, :, 0]
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def linear_gain(image: np.ndarray, gain: float, bias: float = 0.0) -> np.ndarray:
    """out = clip(gain * in + bias)"""
    stretched = image.astype(np.float32) * gain + bias
    return np.clip(stretched, 0, 255).astype(np.uint8)


def gaussian_blur(image: np.ndarray, sigma: float) -> np.ndarray:
    return cv2.GaussianBlur(image, (0, 0), sigmaX=sigma, sigmaY=sigma)


def unsharp_mask(image: np.ndarray, sigma: float, amount: float) -> np.ndarray:
    """Sharpen by adding back `amount` of the detail removed by a blur"""
    blurred = gaussian_blur(image, sigma)
    return cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0)


def clahe(image: np.ndarray, clip_limit: float, tile_grid: int = 8) -> np.ndarray:
    return cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_grid, tile_grid)).apply(image)


@dataclass(frozen=True)
class Recipe:
    """A named enhancement recipe"""
    name: str
    description: str
    apply: Callable[[np.ndarray, Dict[str, Any]], np.ndarray]


def _standard(image, p):
    return binarize(to_gray(image), p["otsu_bias"], p["otsu_min_threshold"])


def _high_contrast(image, p):
    boosted = linear_gain(to_gray(image), p["gain"], p["bias"])
    return binarize(boosted, p["otsu_bias"], p["otsu_min_threshold"])


def _denoised(image, p):
    return gaussian_blur(to_gray(image), p["denoise_sigma"])


def _sharpened(image, p):
    return unsharp_mask(to_gray(image), p["sharpen_sigma"], p["sharpen_amount"])


def _contrast_enhanced(image, p):
    return clahe(to_gray(image), p["clahe_clip"], p["clahe_tiles"])


def _unsharp_blur(image, p):
    sharpened = unsharp_mask(to_gray(image), p["sharpen_sigma"], p["sharpen_amount"])
    return gaussian_blur(sharpened, p["smooth_sigma"])


RECIPES: List[Recipe] = [
    Recipe("standard", "greyscale, Otsu binarization", _standard),
    Recipe("high_contrast", "linear gain then Otsu binarization", _high_contrast),
    Recipe("denoised", "Gaussian noise reduction", _denoised),
    Recipe("sharpened", "unsharp mask", _sharpened),
    Recipe("contrast_enhanced", "CLAHE local contrast", _contrast_enhanced),
    Recipe("unsharp_blur", "unsharp mask then light smoothing", _unsharp_blur),
]


def recipe_parameters(
    config: PipelineConfig,
    metrics: Metrics = None,
) -> Dict[str, Any]:
    """
    Recipe parameters adapted to the page's measured quality.

    Low-contrast pages get a stronger gain and CLAHE clip; noisy pages a
    stronger blur. Every sigma stays inside [0.3, max_blur_sigma].

    Args:
        config: Pipeline configuration
        metrics: ImageQualityMetrics, or its to_dict() form as stored on ImageProfile
    """
    params: Dict[str, Any] = {
        "otsu_bias": config.otsu_bias,
        "otsu_min_threshold": config.otsu_min_threshold,
        "gain": 1.5,
        "bias": -50.0,
        "denoise_sigma": 1.0,
        "sharpen_sigma": 1.0,
        "sharpen_amount": 0.5,
        "smooth_sigma": 0.5,
        "clahe_clip": 2.0,
        "clahe_tiles": 8,
    }

    flags = metrics.to_dict() if isinstance(metrics, ImageQualityMetrics) else dict(metrics or {})
    if flags.get("is_low_contrast"):
        params["gain"] = 1.8
        params["clahe_clip"] = 3.0
    if flags.get("is_noisy"):
        params["denoise_sigma"] = 1.5

    for key in ("denoise_sigma", "sharpen_sigma", "smooth_sigma"):
        params[key] = float(min(max(params[key], MIN_BLUR_SIGMA), config.max_blur_sigma))

    return params


class VariantGenerator:
    """
    Builds ranked enhancement variants for one pipeline run.

    Example:
        generator = VariantGenerator(config)
        variants = generator.generate_variants(normalized, metrics)
        for name, variant in variants.items():  # best proxy first
            ...
    """

    def __init__(self, config: Optional[PipelineConfig] = None, recipes: Optional[List[Recipe]] = None):
        self.config = config or PipelineConfig()
        self.recipes = list(recipes) if recipes is not None else list(RECIPES)

    def generate_variants(
        self,
        normalized: NormalizedImage,
        metrics: Metrics = None,
    ) -> Dict[str, EnhancementVariant]:
        """
        Run every recipe over the normalized image.

        A recipe that raises is logged and skipped. If none succeed, a single
        minimally processed greyscale "fallback" variant is returned.

        Args:
            normalized: Working image from the normalizer
            metrics: Quality metrics used to adapt recipe parameters

        Returns:
            Variants keyed by name, in rank order (highest proxy first)
        """
        source = to_gray(normalized.image)
        reference_size = len(encode_png(source))
        params = recipe_parameters(self.config, metrics)

        generated = []
        for index, recipe in enumerate(self.recipes):
            try:
                image = recipe.apply(source, params)
                buffer = encode_png(image)
            except Exception as e:
                logger.warning(f"Enhancement recipe '{recipe.name}' failed, skipping: {e}")
                continue

            proxy = assess_quality(buffer, reference_size)
            generated.append((index, EnhancementVariant(
                name=recipe.name,
                image=image,
                buffer=buffer,
                quality_proxy=proxy,
                description=recipe.description,
                params=dict(params),
            )))

        if not generated:
            logger.warning("All enhancement recipes failed, using greyscale fallback variant")
            fallback = source.copy()
            return {FALLBACK_VARIANT: EnhancementVariant(
                name=FALLBACK_VARIANT,
                image=fallback,
                buffer=encode_png(fallback),
                quality_proxy=1.0,
                rank=0,
                description="unprocessed greyscale",
                is_fallback=True,
            )}

        generated.sort(key=lambda item: (-item[1].quality_proxy, item[0]))

        variants: Dict[str, EnhancementVariant] = {}
        for rank, (_, variant) in enumerate(generated):
            variant.rank = rank
            variants[variant.name] = variant

        logger.info(
            f"Generated {len(variants)} variants: "
            + ", ".join(f"{v.name}({v.quality_proxy:.3f})" for v in variants.values())
        )
        return variants


def generate_variants(
    normalized: NormalizedImage,
    config: Optional[PipelineConfig] = None,
    metrics: Metrics = None,
) -> Dict[str, EnhancementVariant]:
    """Convenience wrapper around VariantGenerator.generate_variants"""
    return VariantGenerator(config).generate_variants(normalized, metrics)
