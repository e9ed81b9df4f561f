"""
Shared fixtures for the question OCR tests

Provides:
- Synthetic greyscale page images with known characteristics
- PNG / JPEG encoders built on Pillow
- A scriptable fake OCREngine so no test needs the tesseract binary
"""

import io
import threading
import time
from typing import Callable, List, Optional, Union

import numpy as np
import pytest
from PIL import Image

from question_ocr.config import PipelineConfig
from question_ocr.models import EnhancementVariant
from question_ocr.ocr.base import OCREngine, OCRResult, SegmentationProfile

MCQ_TEXT = "1. What is 2+2?\na) 3\nb) 4\nc) 5\nd) 6"
FIB_TEXT = "Q1. The capital of Nepal is ______."


def create_synthetic_page(
    width: int = 900,
    height: int = 700,
    background: int = 235,
    ink: int = 30,
    noise_level: float = 0.0,
    seed: int = 7,
) -> np.ndarray:
    """
    Greyscale page with rows of dark glyph-like boxes.

    Args:
        width: Image width
        height: Image height
        background: Paper intensity (0-255)
        ink: Text intensity (0-255)
        noise_level: Gaussian noise std dev
        seed: RNG seed so every run draws the same page

    Returns:
        uint8 array of shape (height, width)
    """
    rng = np.random.RandomState(seed)
    image = np.full((height, width), background, dtype=np.float32)

    for y in range(40, height - 40, 36):
        for x in range(60, width - 60, 18):
            if rng.random_sample() > 0.3:
                glyph_w = rng.randint(6, 14)
                glyph_h = rng.randint(12, 20)
                image[y:y + glyph_h, x:x + glyph_w] = ink

    if noise_level > 0:
        image = image + rng.normal(0, noise_level, image.shape)

    return np.clip(image, 0, 255).astype(np.uint8)


def encode_image(array: np.ndarray, fmt: str = "PNG", dpi: Optional[int] = None, **params) -> bytes:
    """Encode an array with Pillow"""
    buffer = io.BytesIO()
    kwargs = dict(params)
    if dpi is not None:
        kwargs["dpi"] = (dpi, dpi)
    Image.fromarray(array).save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


def make_variant(name: str, rank: int = 0, size: int = 40) -> EnhancementVariant:
    """Minimal variant for orchestrator tests"""
    image = np.full((size, size), 255, dtype=np.uint8)
    return EnhancementVariant(name=name, image=image, buffer=b"", quality_proxy=1.0, rank=rank)


Response = Union[str, OCRResult, Exception]
Responder = Callable[["FakeEngine", np.ndarray], Response]


class FakeEngine(OCREngine):
    """
    OCREngine whose output is scripted by a responder.

    The responder receives the engine and the image and returns text (reported
    at confidence 0.9), an OCRResult, or an exception to raise.
    """

    def __init__(
        self,
        config: PipelineConfig,
        profile: SegmentationProfile,
        responder: Optional[Responder] = None,
        delay: float = 0.0,
        fail_on_init: bool = False,
    ):
        super().__init__(config, profile)
        self.responder = responder
        self.delay = delay
        self.fail_on_init = fail_on_init
        self.calls: List[tuple] = []
        self.cleaned_up = False
        self._calls_lock = threading.Lock()

    def initialize(self) -> None:
        if self.fail_on_init:
            raise RuntimeError("engine failed to start")
        self._initialized = True

    def recognize(self, image: np.ndarray, timeout: Optional[float] = None) -> OCRResult:
        with self._calls_lock:
            self.calls.append(image.shape)
        if self.delay:
            time.sleep(self.delay)

        response = self.responder(self, image) if self.responder else ""
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return OCRResult(text=response, confidence=0.9 if response else 0.0)
        return response

    def cleanup(self) -> None:
        self.cleaned_up = True
        self._initialized = False


class FakeEngineFactory:
    """EngineFactory that records every FakeEngine it builds"""

    def __init__(
        self,
        responder: Optional[Responder] = None,
        delay: float = 0.0,
        fail_on_init: bool = False,
    ):
        self.responder = responder
        self.delay = delay
        self.fail_on_init = fail_on_init
        self.engines: List[FakeEngine] = []

    def __call__(self, profile: SegmentationProfile, config: PipelineConfig) -> FakeEngine:
        engine = FakeEngine(
            config,
            profile,
            responder=self.responder,
            delay=self.delay,
            fail_on_init=self.fail_on_init,
        )
        self.engines.append(engine)
        return engine

    @property
    def call_count(self) -> int:
        return sum(len(engine.calls) for engine in self.engines)


def fixed_text(text: str, confidence: float = 0.9) -> Responder:
    """Responder returning the same transcript for every image"""
    def respond(engine, image):
        return OCRResult(text=text, confidence=confidence)
    return respond


def make_config(**overrides) -> PipelineConfig:
    """Small, fast configuration with word segmentation off"""
    values = dict(
        pool_size=2,
        attempt_timeout_seconds=5.0,
        pipeline_timeout_seconds=10.0,
        enable_word_segmentation=False,
    )
    values.update(overrides)
    return PipelineConfig(**values)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def page_image():
    """Clean standard-resolution page"""
    return create_synthetic_page()


@pytest.fixture
def page_png(page_image):
    return encode_image(page_image, "PNG", dpi=300)


@pytest.fixture
def black_png():
    return encode_image(np.zeros((700, 900), dtype=np.uint8), "PNG")


@pytest.fixture
def white_png():
    return encode_image(np.full((700, 900), 255, dtype=np.uint8), "PNG")
