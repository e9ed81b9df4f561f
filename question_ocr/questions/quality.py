"""
Result Quality Assessment

Scores a finished extraction so callers can accept it, retry with a better
scan, or send it for manual correction.
"""

import logging
from typing import List, Sequence

from ..models import CorrectedText, QualityAssessment, Question

logger = logging.getLogger(__name__)

WELL_STRUCTURED_CONFIDENCE = 0.7
RESCAN_BELOW = 0.6
REVIEW_TEXT_BELOW = 0.5
REVIEW_STRUCTURE_BELOW = 0.5

RECOMMEND_RESCAN = "Consider re-scanning with higher quality settings"
RECOMMEND_TEXT_REVIEW = "Text quality is poor - manual review recommended"
RECOMMEND_STRUCTURE_REVIEW = "Question structure unclear - manual parsing may be needed"


def readability_score(text: str) -> float:
    """1.0 for short everyday words, falling to 0.0 at an average of 10 characters"""
    words = text.split()
    if not words:
        return 0.0
    average = sum(len(word) for word in words) / len(words)
    return max(0.0, min(1.0, (10.0 - average) / 5.0))


def assess_quality(corrected: CorrectedText, questions: Sequence[Question]) -> QualityAssessment:
    """
    Combine text and structure quality into one assessment.

    Text quality drops by twice the number of corrections per source word.
    Structure quality is the mean of the average question confidence and the
    share of questions above 0.7. The overall score is the mean of the two.
    """
    word_count = len(corrected.original.split())
    correction_ratio = corrected.corrections / max(word_count, 1)
    text_score = max(0.0, 1.0 - correction_ratio * 2.0)

    if questions:
        average_confidence = sum(q.confidence for q in questions) / len(questions)
        well_structured = sum(1 for q in questions if q.confidence > WELL_STRUCTURED_CONFIDENCE)
        well_structured_ratio = well_structured / len(questions)
        structure_score = (average_confidence + well_structured_ratio) / 2.0
    else:
        average_confidence = well_structured_ratio = structure_score = 0.0

    overall = (text_score + structure_score) / 2.0

    recommendations: List[str] = []
    if overall < RESCAN_BELOW:
        recommendations.append(RECOMMEND_RESCAN)
    if text_score < REVIEW_TEXT_BELOW:
        recommendations.append(RECOMMEND_TEXT_REVIEW)
    if structure_score < REVIEW_STRUCTURE_BELOW:
        recommendations.append(RECOMMEND_STRUCTURE_REVIEW)

    if recommendations:
        logger.debug(f"Quality {overall:.2f}: {recommendations}")

    return QualityAssessment(
        text_score=round(text_score, 4),
        corrections_made=corrected.corrections,
        correction_ratio=round(correction_ratio, 4),
        readability=round(readability_score(corrected.text), 4),
        structure_score=round(structure_score, 4),
        questions_found=len(questions),
        average_confidence=round(average_confidence, 4),
        well_structured_ratio=round(well_structured_ratio, 4),
        overall_score=round(overall, 4),
        recommendations=tuple(recommendations),
    )
