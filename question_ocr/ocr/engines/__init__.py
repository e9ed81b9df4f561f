"""OCR Engine Implementations"""

from ..base import OCREngine, SegmentationProfile
from ...config import PipelineConfig
from .tesseract_engine import TesseractEngine

__all__ = ['TesseractEngine', 'create_engine', 'ENGINES']

ENGINES = {
    'tesseract': TesseractEngine,
}


def create_engine(name: str, profile: SegmentationProfile, config: PipelineConfig) -> OCREngine:
    """
    Build an (uninitialized) engine by registry name.

    Args:
        name: Engine name, e.g. "tesseract"
        profile: Segmentation profile the engine is pre-tuned with
        config: Pipeline configuration

    Returns:
        OCREngine instance
    """
    try:
        engine_cls = ENGINES[name]
    except KeyError:
        raise ValueError(f"Unknown OCR engine: {name}. Available: {sorted(ENGINES)}") from None
    return engine_cls(config, profile)
