"""
Question OCR
Turns photographed or scanned exam-question images into structured questions
"""

from .config import PipelineConfig, detect_hardware_capabilities, get_default_config
from .errors import (
    EngineError,
    ExtractionError,
    InvalidImage,
    NoUsableResult,
    PipelineCancelled,
    PipelineError,
    PipelineTimeout,
    WorkerUnavailable,
)
from .models import (
    Blank,
    ExtractionOptions,
    OptionChoice,
    PipelineResult,
    ProcessingInfo,
    Question,
    QuestionType,
)

__version__ = "0.1.0"

__all__ = [
    'PipelineConfig',
    'get_default_config',
    'detect_hardware_capabilities',
    'PipelineError',
    'InvalidImage',
    'NoUsableResult',
    'PipelineTimeout',
    'WorkerUnavailable',
    'PipelineCancelled',
    'ExtractionError',
    'EngineError',
    'Blank',
    'ExtractionOptions',
    'OptionChoice',
    'PipelineResult',
    'ProcessingInfo',
    'Question',
    'QuestionType',
    'ExtractionPipeline',
    'ResultCache',
    'PerformanceMonitor',
]


# Lazy imports so models/config users do not pull in OpenCV, Tesseract or psutil sampling
def __getattr__(name):
    if name == "ExtractionPipeline":
        from .pipeline import ExtractionPipeline
        return ExtractionPipeline
    if name == "ResultCache":
        from .cache import ResultCache
        return ResultCache
    if name == "PerformanceMonitor":
        from .telemetry import PerformanceMonitor
        return PerformanceMonitor
    raise AttributeError(f"module 'question_ocr' has no attribute '{name}'")
