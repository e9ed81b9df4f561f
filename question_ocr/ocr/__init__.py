"""
OCR Stage Package
Image normalization, enhancement variants, recognizer pool, fusion and correction
"""

from .base import OCREngine, OCRResult, OCRWord, SegmentationProfile
from .binarization import biased_threshold, binarize, intensity_histogram, otsu_threshold
from .image_quality_analyzer import ImageQualityAnalyzer, ImageQualityMetrics, assess_quality

__all__ = [
    'OCREngine',
    'OCRResult',
    'OCRWord',
    'SegmentationProfile',
    'ImageQualityAnalyzer',
    'ImageQualityMetrics',
    'assess_quality',
    'intensity_histogram',
    'otsu_threshold',
    'biased_threshold',
    'binarize',
    'WorkerPool',
    'Orchestrator',
    'TesseractEngine',
]


# Lazy imports so config/base users do not pull in pytesseract or the thread pool
def __getattr__(name):
    if name == "WorkerPool":
        from .worker_pool import WorkerPool
        return WorkerPool
    if name == "Orchestrator":
        from .orchestrator import Orchestrator
        return Orchestrator
    if name == "TesseractEngine":
        from .engines.tesseract_engine import TesseractEngine
        return TesseractEngine
    raise AttributeError(f"module 'question_ocr.ocr' has no attribute '{name}'")
