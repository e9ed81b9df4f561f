"""
Result Fusion & Scoring

Picks the single best transcript among recognition attempts.

Score weights (sum 1.0):
- 0.40 recognizer confidence
- 0.20 plausible length band (characters and words)
- 0.20 question vocabulary (interrogatives, option markers, numbers)
- 0.10 structure (question mark, full stop, capitalization)
- 0.10 noise penalty, subtracted when the noise ratio passes 5%

The fused text always comes from exactly one attempt; near-identical attempts
only lift the reported confidence.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Tuple

from ..errors import NoUsableResult
from ..models import FusedTranscript, RecognitionAttempt
from ..questions.similarity import jaccard, token_set

logger = logging.getLogger(__name__)

WEIGHT_CONFIDENCE = 0.40
WEIGHT_LENGTH = 0.20
WEIGHT_VOCABULARY = 0.20
WEIGHT_NOISE = 0.10

LENGTH_BAND = (50, 10_000)
WORD_BAND = (10, 2_000)
NOISE_TOLERANCE = 0.05

QUESTION_WORDS = {
    "what", "which", "who", "whom", "whose", "when", "where", "why", "how",
    "explain", "describe", "define", "calculate", "find", "solve", "state",
    "choose", "select", "identify", "fill", "complete", "name", "list",
}

_WORD_RE = re.compile(r"[A-Za-z]+")
_OPTION_MARKER_RE = re.compile(r"(?:^|\s)\(?[A-Ea-e][).](?=\s|$)", re.MULTILINE)
_NUMBER_RE = re.compile(r"\b\d+\b")
_NOISE_RE = re.compile(r"[^A-Za-z0-9\s.,!?()\[\]\-_]")
_CAPITAL_RE = re.compile(r"[A-Z]")


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component contributions to an attempt's fusion score"""
    confidence: float
    length: float
    vocabulary: float
    structure: float
    noise_penalty: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def noise_ratio(text: str) -> float:
    """Share of characters outside letters, digits, whitespace and basic punctuation"""
    if not text:
        return 0.0
    return len(_NOISE_RE.findall(text)) / float(len(text))


def score_attempt(attempt: RecognitionAttempt) -> ScoreBreakdown:
    """
    Deterministic fusion score of one attempt.

    Depends only on the attempt's text and confidence, so it can be
    recomputed later for auditing.
    """
    text = attempt.text or ""

    confidence = WEIGHT_CONFIDENCE * max(0.0, min(1.0, attempt.confidence))

    words = text.split()
    in_length = LENGTH_BAND[0] <= len(text) <= LENGTH_BAND[1]
    in_words = WORD_BAND[0] <= len(words) <= WORD_BAND[1]
    if in_length and in_words:
        length = WEIGHT_LENGTH
    elif in_length or in_words:
        length = WEIGHT_LENGTH / 2
    else:
        length = 0.0

    question_words = sum(1 for w in _WORD_RE.findall(text.lower()) if w in QUESTION_WORDS)
    option_markers = len(_OPTION_MARKER_RE.findall(text))
    numbers = len(_NUMBER_RE.findall(text))
    vocabulary = min(0.05 * question_words + 0.03 * option_markers + 0.02 * numbers, WEIGHT_VOCABULARY)

    structure = 0.0
    if "?" in text:
        structure += 0.03
    if "." in text:
        structure += 0.03
    if _CAPITAL_RE.search(text):
        structure += 0.04

    ratio = noise_ratio(text)
    noise_penalty = ratio * WEIGHT_NOISE if ratio > NOISE_TOLERANCE else 0.0

    total = round(max(0.0, confidence + length + vocabulary + structure - noise_penalty), 6)
    return ScoreBreakdown(
        confidence=round(confidence, 6),
        length=round(length, 6),
        vocabulary=round(vocabulary, 6),
        structure=round(structure, 6),
        noise_penalty=round(noise_penalty, 6),
        total=total,
    )


def _ordering_key(scored: Tuple[RecognitionAttempt, ScoreBreakdown]):
    attempt, breakdown = scored
    return (-breakdown.total, -attempt.confidence, attempt.dispatch_index)


def rank_attempts(attempts: Iterable[RecognitionAttempt]) -> List[Tuple[RecognitionAttempt, ScoreBreakdown]]:
    """Usable attempts with their scores, best first"""
    scored = [(a, score_attempt(a)) for a in attempts if a.usable]
    scored.sort(key=_ordering_key)
    return scored


def fuse(attempts: Iterable[RecognitionAttempt], corroboration_threshold: float = 0.9) -> FusedTranscript:
    """
    Choose the best attempt.

    Ties on score go to the higher raw confidence, then the earlier dispatch.
    Attempts whose token sets are at least `corroboration_threshold` similar
    to the winner form a group; the reported confidence is
    max(winner confidence, group mean).

    Raises:
        NoUsableResult: If no attempt produced text without error
    """
    attempts = list(attempts)
    ranked = rank_attempts(attempts)
    if not ranked:
        raise NoUsableResult(
            f"No usable recognition result among {len(attempts)} attempts"
        )

    winner, breakdown = ranked[0]
    winner_tokens = token_set(winner.text)
    group = [a for a, _ in ranked if jaccard(winner_tokens, token_set(a.text)) >= corroboration_threshold]
    group_mean = sum(a.confidence for a in group) / len(group)
    confidence = max(winner.confidence, group_mean)

    logger.info(
        f"Fused {len(ranked)}/{len(attempts)} candidates: chose {winner.variant} on "
        f"{winner.worker_id} (score={breakdown.total:.4f}, conf={confidence:.3f}, "
        f"corroborating={len(group)})"
    )

    return FusedTranscript(
        attempt=winner,
        score=breakdown.total,
        confidence=round(confidence, 6),
        corroborating=len(group),
        breakdown=breakdown.to_dict(),
    )
