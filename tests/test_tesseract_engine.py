"""
Unit Tests for TesseractEngine

pytesseract is monkeypatched, so the tesseract binary is never invoked.
"""

import numpy as np
import pytest
import pytesseract

from question_ocr.ocr.base import SegmentationProfile
from question_ocr.ocr.engines import create_engine
from question_ocr.ocr.engines.tesseract_engine import TesseractEngine

from conftest import make_config


def tesseract_data(rows):
    """Build an image_to_data DICT from (text, conf, block, par, line) rows"""
    data = {key: [] for key in ("text", "conf", "block_num", "par_num", "line_num", "left", "top", "width", "height")}
    for i, (text, conf, block, par, line) in enumerate(rows):
        data["text"].append(text)
        data["conf"].append(conf)
        data["block_num"].append(block)
        data["par_num"].append(par)
        data["line_num"].append(line)
        data["left"].append(i * 10)
        data["top"].append(line * 20)
        data["width"].append(8)
        data["height"].append(12)
    return data


@pytest.fixture
def engine(monkeypatch):
    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    engine = TesseractEngine(make_config(), SegmentationProfile.named("single_block"))
    engine.initialize()
    return engine


class TestAssembleText:
    """Test line reconstruction from word rows"""

    def test_lines_and_blocks(self, engine):
        data = tesseract_data([
            ("", -1, 1, 0, 0),
            ("1.", 95, 1, 1, 1),
            ("What", 90, 1, 1, 1),
            ("is", 92, 1, 1, 1),
            ("2+2?", 85, 1, 1, 1),
            ("a)", 90, 1, 1, 2),
            ("4", 80, 1, 1, 2),
            ("Next", 70, 2, 1, 1),
        ])

        text, words = engine._assemble_text(data)

        assert text == "1. What is 2+2?\na) 4\n\nNext"
        assert len(words) == 7
        assert words[1].confidence == pytest.approx(0.9)
        assert words[1].bbox == (20, 20, 8, 12)

    def test_garbage_and_layout_rows_skipped(self, engine):
        data = tesseract_data([
            ("|", 60, 1, 1, 1),
            ("Hello", 90, 1, 1, 1),
            ("  ", 90, 1, 1, 1),
            ("world", "-1", 1, 1, 1),
        ])

        text, words = engine._assemble_text(data)

        assert text == "Hello"
        assert [w.text for w in words] == ["Hello"]


class TestRecognize:
    """Test recognize() result handling"""

    def test_confidence_is_word_mean(self, engine, monkeypatch):
        data = tesseract_data([("Hello", 80, 1, 1, 1), ("world", 60, 1, 1, 1)])
        monkeypatch.setattr(pytesseract, "image_to_data", lambda *args, **kwargs: data)

        result = engine.recognize(np.zeros((20, 20), dtype=np.uint8), timeout=5)

        assert result.text == "Hello world"
        assert result.confidence == pytest.approx(0.7)
        assert result.error is None

    def test_passes_profile_and_timeout(self, engine, monkeypatch):
        captured = {}

        def fake_image_to_data(image, **kwargs):
            captured.update(kwargs)
            return tesseract_data([])

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

        result = engine.recognize(np.zeros((20, 20), dtype=np.uint8), timeout=7)

        assert captured["config"] == "--oem 3 --psm 6"
        assert captured["lang"] == "eng"
        assert captured["timeout"] == 7
        assert result.text == ""
        assert result.confidence == 0.0

    def test_process_timeout_reported(self, engine, monkeypatch):
        def slow(*args, **kwargs):
            raise RuntimeError("Tesseract process timeout")

        monkeypatch.setattr(pytesseract, "image_to_data", slow)

        result = engine.recognize(np.zeros((20, 20), dtype=np.uint8), timeout=1)

        assert result.timed_out
        assert result.error == "Tesseract process timeout"

    def test_other_failure_reported(self, engine, monkeypatch):
        def broken(*args, **kwargs):
            raise OSError("disk on fire")

        monkeypatch.setattr(pytesseract, "image_to_data", broken)

        result = engine.recognize(np.zeros((20, 20), dtype=np.uint8))

        assert not result.timed_out
        assert "disk on fire" in result.error

    def test_requires_initialize(self):
        engine = TesseractEngine(make_config(), SegmentationProfile.named("auto"))

        with pytest.raises(RuntimeError):
            engine.recognize(np.zeros((20, 20), dtype=np.uint8))


class TestLifecycle:
    """Test initialization and the engine registry"""

    def test_missing_binary(self, monkeypatch):
        def missing():
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "get_tesseract_version", missing)
        engine = TesseractEngine(make_config(), SegmentationProfile.named("auto"))

        with pytest.raises(RuntimeError):
            engine.initialize()
        assert not engine.is_available()

    def test_cleanup(self, engine):
        engine.cleanup()

        assert not engine.is_available()

    def test_registry(self):
        engine = create_engine("tesseract", SegmentationProfile.named("sparse"), make_config())

        assert isinstance(engine, TesseractEngine)
        assert engine.profile.psm == 11

    def test_unknown_engine(self):
        with pytest.raises(ValueError):
            create_engine("abbyy", SegmentationProfile.named("auto"), make_config())
