"""
Base OCR Engine Abstract Interface
Defines the contract that all recognizer engines must implement
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..config import SEGMENTATION_MODES, PipelineConfig


@dataclass
class OCRWord:
    """A single recognized word with its box (left, top, width, height)"""
    text: str
    confidence: float
    bbox: Tuple[int, int, int, int] = (0, 0, 0, 0)


@dataclass
class OCRResult:
    """Result from OCR processing"""
    text: str
    confidence: float
    words: List[OCRWord] = field(default_factory=list)
    error: Optional[str] = None
    timed_out: bool = False
    processing_time: float = 0.0  # Processing time in seconds

    @property
    def word_count(self) -> int:
        if self.words:
            return len(self.words)
        return len(self.text.split())


@dataclass(frozen=True)
class SegmentationProfile:
    """Page segmentation strategy a worker's engine is pre-tuned with"""
    name: str
    psm: int

    @classmethod
    def named(cls, name: str) -> "SegmentationProfile":
        if name not in SEGMENTATION_MODES:
            raise ValueError(f"Unknown segmentation profile: {name}")
        return cls(name=name, psm=SEGMENTATION_MODES[name])


class OCREngine(ABC):
    """Abstract base class for OCR engines"""

    def __init__(self, config: PipelineConfig, profile: SegmentationProfile):
        self.config = config
        self.profile = profile
        self._initialized = False

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the OCR engine.
        Should be called before first use.
        """
        pass

    @abstractmethod
    def recognize(self, image: np.ndarray, timeout: Optional[float] = None) -> OCRResult:
        """
        Recognize text in a single greyscale image.

        Engines report failures through OCRResult.error rather than raising.

        Args:
            image: Image as numpy array (uint8, single channel)
            timeout: Seconds the engine may spend before giving up

        Returns:
            OCRResult with extracted text and metadata
        """
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """
        Release resources.
        Should be called when the engine is no longer needed.
        """
        pass

    def is_available(self) -> bool:
        """Check if engine is available and ready to process"""
        return self._initialized

    @property
    def is_initialized(self) -> bool:
        """Check if engine has been initialized"""
        return self._initialized

    def __enter__(self):
        """Context manager support"""
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager cleanup"""
        self.cleanup()
        return False
