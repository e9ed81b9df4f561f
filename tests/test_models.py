"""
Unit Tests for result models and token similarity
"""

import pytest

from question_ocr.models import (
    Blank,
    ExtractionOptions,
    OptionChoice,
    PipelineResult,
    ProcessingInfo,
    QualityAssessment,
    Question,
    QuestionType,
)
from question_ocr.questions.similarity import jaccard, token_set


class TestQuestionInvariants:
    """Test the payload rules tied to the type tag"""

    def test_mcq_needs_two_options(self):
        with pytest.raises(ValueError):
            Question(1, QuestionType.MCQ, "Pick?", 0.5, "raw", options=(OptionChoice("A", "x"),))

    def test_mcq_labels_unique(self):
        with pytest.raises(ValueError):
            Question(
                1, QuestionType.MCQ, "Pick?", 0.5, "raw",
                options=(OptionChoice("A", "x"), OptionChoice("A", "y")),
            )

    def test_fib_needs_blank(self):
        with pytest.raises(ValueError):
            Question(1, QuestionType.FIB, "No blank here", 0.5, "raw")

    def test_descriptive_has_no_payload(self):
        with pytest.raises(ValueError):
            Question(1, QuestionType.DESCRIPTIVE, "Explain", 0.5, "raw", blanks=(Blank(0, "___", 3),))

    def test_dict_round_trip(self):
        question = Question(
            2, QuestionType.FIB, "Water boils at ___ degrees", 0.65, "Q2. Water boils at ___ degrees",
            blanks=(Blank(15, "___", 3),), answer="100",
        )

        data = question.to_dict()

        assert data["type"] == "FIB"
        assert data["blanks"] == [{"position": 15, "placeholder": "___", "length": 3}]
        assert Question.from_dict(data) == question


class TestOptions:
    """Test request option parsing"""

    def test_camel_case(self):
        options = ExtractionOptions.from_dict({"subject": "Math", "expectedQuestionCount": "3", "requestId": "r"})

        assert options == ExtractionOptions("Math", 3, "r")

    def test_empty(self):
        assert ExtractionOptions.from_dict(None) == ExtractionOptions()

    def test_canonical_drops_request_id(self):
        assert ExtractionOptions(" Physics ", 2, "r").canonical() == {
            "subject": "physics",
            "expected_question_count": 2,
        }


class TestPipelineResult:
    """Test serialization of results"""

    def test_cache_dict_excludes_attempts(self):
        result = PipelineResult(text="t", confidence=0.5, attempts=[{"variant": "standard"}])

        assert "attempts" not in result.to_cache_dict()
        assert result.to_dict(include_attempts=True)["attempts"] == [{"variant": "standard"}]

    def test_processing_info_keys(self):
        data = ProcessingInfo(chosen_variant="denoised", timed_out=True).to_dict()

        assert data["chosenVariant"] == "denoised"
        assert data["timedOut"] is True
        assert ProcessingInfo.from_dict(data) == ProcessingInfo(chosen_variant="denoised", timed_out=True)

    def test_quality_metrics_nested_shape(self):
        quality = QualityAssessment(
            text_score=0.8, corrections_made=2, structure_score=0.4,
            questions_found=3, overall_score=0.6, recommendations=("Review",),
        )
        data = ProcessingInfo(quality=quality).to_dict()

        assert data["qualityMetrics"]["textQuality"]["correctionsMade"] == 2
        assert data["qualityMetrics"]["structureQuality"]["questionsFound"] == 3
        assert data["qualityMetrics"]["recommendations"] == ["Review"]
        assert ProcessingInfo.from_dict(data).quality == quality

    def test_quality_metrics_absent_by_default(self):
        data = ProcessingInfo().to_dict()

        assert data["qualityMetrics"] is None
        assert ProcessingInfo.from_dict(data).quality is None

    def test_with_cache_flag(self):
        result = PipelineResult(text="t", confidence=0.5)

        assert result.with_cache_flag(True).processing_info.from_cache
        assert not result.processing_info.from_cache


class TestSimilarity:
    """Test token-set Jaccard similarity"""

    def test_identical(self):
        assert jaccard("What is water?", "what is WATER") == 1.0

    def test_partial(self):
        assert jaccard("a b c d", "a b c e") == pytest.approx(3 / 5)

    def test_empty_sets(self):
        assert jaccard("", "") == 1.0
        assert jaccard("", "words") == 0.0

    def test_accepts_token_sets(self):
        assert jaccard(token_set("a b"), "b a") == 1.0
