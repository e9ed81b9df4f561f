"""
Unit Tests for ImageQualityAnalyzer

Tests content metrics, the metadata heuristic and the size proxy.
"""

import cv2
import numpy as np
import pytest

from question_ocr.ocr.image_quality_analyzer import (
    DocumentType,
    ImageQualityAnalyzer,
    assess_quality,
    content_adjustment,
    is_low_quality,
    metadata_score,
)

from conftest import create_synthetic_page


class TestImageQualityAnalyzer:
    """Test ImageQualityAnalyzer class"""

    def test_analyzer_initialization(self):
        analyzer = ImageQualityAnalyzer(
            blur_threshold=150.0,
            contrast_threshold=50.0,
            noise_threshold=40.0
        )

        assert analyzer.blur_threshold == 150.0
        assert analyzer.contrast_threshold == 50.0
        assert analyzer.noise_threshold == 40.0

    def test_from_config(self, config):
        analyzer = ImageQualityAnalyzer.from_config(config)

        assert analyzer.blur_threshold == config.blur_threshold
        assert analyzer.noise_threshold == config.noise_threshold

    def test_uniform_image_is_blank(self):
        metrics = ImageQualityAnalyzer().analyze(np.full((200, 300), 255, dtype=np.uint8))

        assert metrics.is_uniform
        assert metrics.document_type is DocumentType.BLANK
        assert metrics.dynamic_range == 0.0
        assert metrics.is_low_contrast

    def test_sharp_page_is_not_blurry(self):
        metrics = ImageQualityAnalyzer().analyze(create_synthetic_page())

        assert not metrics.is_uniform
        assert not metrics.is_blurry
        assert metrics.contrast_score > 40.0

    def test_blurred_page_scores_lower(self):
        sharp = create_synthetic_page()
        blurred = cv2.GaussianBlur(sharp, (15, 15), 0)
        analyzer = ImageQualityAnalyzer()

        assert analyzer.analyze(blurred).blur_score < analyzer.analyze(sharp).blur_score

    def test_colour_input_is_converted(self):
        gray = create_synthetic_page(width=300, height=200)
        colour = np.dstack([gray, gray, gray])

        metrics = ImageQualityAnalyzer().analyze(colour)

        assert metrics.contrast_score == pytest.approx(float(np.std(gray)), rel=1e-3)

    def test_empty_image_gets_worst_case_metrics(self):
        metrics = ImageQualityAnalyzer().analyze(np.zeros((0, 0), dtype=np.uint8))

        assert metrics.is_uniform
        assert metrics.blur_score == 0.0

    def test_metrics_to_dict(self):
        data = ImageQualityAnalyzer().analyze(create_synthetic_page(width=300, height=200)).to_dict()

        assert set(data) >= {"blur_score", "contrast_score", "noise_level", "is_low_contrast", "is_noisy"}
        assert isinstance(data["document_type"], str)

    def test_quality_score_is_bounded(self):
        analyzer = ImageQualityAnalyzer()
        blank = analyzer.analyze(np.zeros((10, 10), dtype=np.uint8))

        assert 0.0 <= analyzer.quality_score(10, 10, 30, "GIF", blank) <= 100.0
        assert 0.0 <= analyzer.quality_score(5000, 5000, 600, "PNG") <= 100.0


class TestScoring:
    """Test metadata heuristic and content adjustments"""

    def test_metadata_score_high_quality_scan(self):
        # 50 + 20 (pixels) + 15 (dpi) + 5 (lossless)
        assert metadata_score(2480, 3508, 300, "PNG") == 90.0

    def test_metadata_score_small_jpeg(self):
        # 50 - 20 (pixels) - 10 (dpi) + 2 (jpeg)
        assert metadata_score(640, 480, 72, "JPEG") == 22.0

    def test_metadata_score_mid_range(self):
        # 50 + 10 + 5 + 0
        assert metadata_score(1000, 800, 150, "GIF") == 65.0

    def test_content_adjustment(self):
        analyzer = ImageQualityAnalyzer()
        blank = analyzer.analyze(np.zeros((50, 50), dtype=np.uint8))

        assert content_adjustment(blank) == -40.0

    def test_assess_quality_ratio(self):
        assert assess_quality(b"x" * 50, 100) == 0.5
        assert assess_quality(b"x" * 50, 0) == 0.0

    def test_is_low_quality(self):
        assert is_low_quality(39.9)
        assert not is_low_quality(40.0)
        assert is_low_quality(55.0, threshold=60.0)
