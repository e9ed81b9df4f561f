"""
Data model for the question extraction pipeline.

Internal attributes are snake_case; to_dict()/from_dict() speak the camelCase
shape exposed to external collaborators.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class ResolutionClass(str, Enum):
    """Coarse resolution band of the source image"""
    LOW = "low"
    STANDARD = "standard"
    HIGH = "high"


class QuestionType(str, Enum):
    """Closed set of question shapes"""
    MCQ = "MCQ"
    FIB = "FIB"
    DESCRIPTIVE = "DESCRIPTIVE"


@dataclass(frozen=True)
class RawImage:
    """Image bytes as received at the ingestion boundary"""
    data: bytes
    mime_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ImageProfile:
    """
    Metadata and derived quality of a source image.

    Attributes:
        width: Source width in pixels (after orientation fix)
        height: Source height in pixels (after orientation fix)
        channels: Channel count of the decoded source
        bit_depth: Bits per channel
        dpi: Declared density, 72 when the file carries none
        format: Source format name as reported by Pillow (PNG, JPEG, ...)
        quality_score: Heuristic score in [0, 100]
        resolution_class: low / standard / high band
        working_width: Width after normalization
        working_height: Height after normalization
        metrics: Content metrics from the quality analyzer
    """
    width: int
    height: int
    channels: int
    bit_depth: int
    dpi: float
    format: str
    quality_score: float
    resolution_class: ResolutionClass
    working_width: int = 0
    working_height: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "channels": self.channels,
            "bit_depth": self.bit_depth,
            "dpi": self.dpi,
            "format": self.format,
            "quality_score": self.quality_score,
            "resolution_class": self.resolution_class.value,
            "working_width": self.working_width,
            "working_height": self.working_height,
            "metrics": dict(self.metrics),
        }


@dataclass
class NormalizedImage:
    """Greyscale working image produced by the normalizer"""
    image: np.ndarray  # uint8, single channel
    scale_factor: float = 1.0
    rotated: bool = False
    source_format: str = ""

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass
class EnhancementVariant:
    """
    One enhanced copy of the normalized image.

    quality_proxy is a relative signal (encoded size ratio) used only to order
    recognition attempts.
    """
    name: str
    image: np.ndarray
    buffer: bytes
    quality_proxy: float
    rank: int = 0
    description: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    is_fallback: bool = False


@dataclass(frozen=True)
class RecognitionAttempt:
    """Outcome of running one variant on one worker"""
    variant: str
    worker_id: str
    text: str
    confidence: float
    word_count: int
    duration_ms: float
    dispatch_index: int
    profile: str = ""
    error: Optional[str] = None
    timed_out: bool = False
    retried: bool = False

    @property
    def usable(self) -> bool:
        """Failed, timed-out and empty attempts never compete in fusion"""
        if self.error is not None or self.timed_out:
            return False
        return bool(self.text.strip())

    def to_summary(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "workerId": self.worker_id,
            "profile": self.profile,
            "confidence": self.confidence,
            "wordCount": self.word_count,
            "durationMs": self.duration_ms,
            "dispatchIndex": self.dispatch_index,
            "error": self.error,
            "timedOut": self.timed_out,
            "retried": self.retried,
        }


@dataclass(frozen=True)
class FusedTranscript:
    """
    The winning attempt plus its fusion score.

    score is recomputable from the attempt with fusion.score_attempt();
    confidence may be raised above attempt.confidence by corroborating attempts.
    """
    attempt: RecognitionAttempt
    score: float
    confidence: float
    corroborating: int = 1
    breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.attempt.text


@dataclass(frozen=True)
class CorrectedText:
    """Transcript after rule-based correction"""
    text: str
    original: str
    corrections: int = 0
    math_applied: bool = False


@dataclass(frozen=True)
class OptionChoice:
    label: str
    text: str


@dataclass(frozen=True)
class Blank:
    position: int
    placeholder: str
    length: int


@dataclass(frozen=True)
class Question:
    """
    Extracted question record.

    The type tag decides the payload: MCQ carries options, FIB carries blanks,
    DESCRIPTIVE carries neither.
    """
    id: int
    type: QuestionType
    question_text: str
    confidence: float
    raw_source_text: str
    options: Tuple[OptionChoice, ...] = ()
    blanks: Tuple[Blank, ...] = ()
    answer: Optional[str] = None

    def __post_init__(self):
        if self.type is QuestionType.MCQ:
            if not 2 <= len(self.options) <= 5 or self.blanks:
                raise ValueError("MCQ questions need 2-5 options and no blanks")
            labels = [option.label for option in self.options]
            if len(set(labels)) != len(labels):
                raise ValueError(f"Duplicate option labels: {labels}")
        elif self.type is QuestionType.FIB:
            if not self.blanks or self.options:
                raise ValueError("FIB questions need at least one blank and no options")
        elif self.options or self.blanks:
            raise ValueError("DESCRIPTIVE questions carry neither options nor blanks")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "questionText": self.question_text,
            "options": [{"label": o.label, "text": o.text} for o in self.options],
            "blanks": [
                {"position": b.position, "placeholder": b.placeholder, "length": b.length}
                for b in self.blanks
            ],
            "confidence": self.confidence,
            "rawSourceText": self.raw_source_text,
        }
        if self.answer is not None:
            data["answer"] = self.answer
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=int(data["id"]),
            type=QuestionType(data["type"]),
            question_text=data["questionText"],
            confidence=float(data["confidence"]),
            raw_source_text=data.get("rawSourceText", ""),
            options=tuple(OptionChoice(o["label"], o["text"]) for o in data.get("options", [])),
            blanks=tuple(
                Blank(b["position"], b["placeholder"], b["length"]) for b in data.get("blanks", [])
            ),
            answer=data.get("answer"),
        )


@dataclass(frozen=True)
class ExtractionIssue:
    """A question block that failed validation"""
    block_index: int
    reason: str
    block_preview: str = ""

    kind = "extraction_error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "blockIndex": self.block_index,
            "message": self.reason,
            "blockPreview": self.block_preview,
        }


@dataclass(frozen=True)
class ExtractionOptions:
    """Per-request options accepted by extract()"""
    subject: Optional[str] = None
    expected_question_count: Optional[int] = None
    request_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExtractionOptions":
        if not data:
            return cls()
        expected = data.get("expectedQuestionCount", data.get("expected_question_count"))
        return cls(
            subject=data.get("subject"),
            expected_question_count=int(expected) if expected is not None else None,
            request_id=data.get("requestId", data.get("request_id")),
        )

    def canonical(self) -> Dict[str, Any]:
        """Processing-relevant options in a stable form (request_id excluded)"""
        subject = self.subject.strip().casefold() if self.subject else None
        return {
            "subject": subject or None,
            "expected_question_count": self.expected_question_count,
        }


@dataclass(frozen=True)
class QualityAssessment:
    """
    How much a result can be trusted.

    text_score falls with the share of characters the corrector had to
    change; structure_score blends mean question confidence with the share of
    well-structured questions. Recommendations tell the caller whether to
    rescan or review by hand.
    """
    text_score: float = 0.0
    corrections_made: int = 0
    correction_ratio: float = 0.0
    readability: float = 0.0
    structure_score: float = 0.0
    questions_found: int = 0
    average_confidence: float = 0.0
    well_structured_ratio: float = 0.0
    overall_score: float = 0.0
    recommendations: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "textQuality": {
                "score": self.text_score,
                "correctionsMade": self.corrections_made,
                "correctionRatio": self.correction_ratio,
                "readability": self.readability,
            },
            "structureQuality": {
                "score": self.structure_score,
                "questionsFound": self.questions_found,
                "avgConfidence": self.average_confidence,
                "wellStructuredRatio": self.well_structured_ratio,
            },
            "overallScore": self.overall_score,
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityAssessment":
        text = data.get("textQuality", {})
        structure = data.get("structureQuality", {})
        return cls(
            text_score=text.get("score", 0.0),
            corrections_made=text.get("correctionsMade", 0),
            correction_ratio=text.get("correctionRatio", 0.0),
            readability=text.get("readability", 0.0),
            structure_score=structure.get("score", 0.0),
            questions_found=structure.get("questionsFound", 0),
            average_confidence=structure.get("avgConfidence", 0.0),
            well_structured_ratio=structure.get("wellStructuredRatio", 0.0),
            overall_score=data.get("overallScore", 0.0),
            recommendations=tuple(data.get("recommendations", [])),
        )


@dataclass
class ProcessingInfo:
    """Timing and quality telemetry attached to every result"""
    total_time_ms: float = 0.0
    per_stage_time_ms: Dict[str, float] = field(default_factory=dict)
    chosen_variant: Optional[str] = None
    chosen_worker: Optional[str] = None
    image_quality_score: Optional[float] = None
    from_cache: bool = False
    attempt_count: int = 0
    early_exit: bool = False
    low_quality_warning: bool = False
    fallback_variant_used: bool = False
    duplicate_image: bool = False
    timed_out: bool = False
    request_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    quality: Optional[QualityAssessment] = None

    _KEYS = (
        ("total_time_ms", "totalTimeMs"),
        ("per_stage_time_ms", "perStageTimeMs"),
        ("chosen_variant", "chosenVariant"),
        ("chosen_worker", "chosenWorker"),
        ("image_quality_score", "imageQualityScore"),
        ("from_cache", "fromCache"),
        ("attempt_count", "attemptCount"),
        ("early_exit", "earlyExit"),
        ("low_quality_warning", "lowQualityWarning"),
        ("fallback_variant_used", "fallbackVariantUsed"),
        ("duplicate_image", "duplicateImage"),
        ("timed_out", "timedOut"),
        ("request_id", "requestId"),
        ("warnings", "warnings"),
        ("quality", "qualityMetrics"),
    )

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for attr, key in self._KEYS:
            value = getattr(self, attr)
            if isinstance(value, QualityAssessment):
                value = value.to_dict()
            elif isinstance(value, dict):
                value = dict(value)
            elif isinstance(value, list):
                value = list(value)
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingInfo":
        kwargs = {attr: data[key] for attr, key in cls._KEYS if key in data}
        if kwargs.get("quality") is not None:
            kwargs["quality"] = QualityAssessment.from_dict(kwargs["quality"])
        return cls(**kwargs)


@dataclass
class PipelineResult:
    """
    The externally visible output of one extraction run.

    attempts holds per-attempt debug summaries; it is excluded from equality
    and from the cached payload.
    """
    text: str
    confidence: float
    questions: List[Question] = field(default_factory=list)
    processing_info: ProcessingInfo = field(default_factory=ProcessingInfo)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    attempts: List[Dict[str, Any]] = field(default_factory=list, compare=False)

    def to_dict(self, include_attempts: bool = False) -> Dict[str, Any]:
        data = {
            "text": self.text,
            "confidence": self.confidence,
            "questions": [q.to_dict() for q in self.questions],
            "processingInfo": self.processing_info.to_dict(),
            "errors": [dict(e) for e in self.errors],
        }
        if include_attempts:
            data["attempts"] = [dict(a) for a in self.attempts]
        return data

    def to_cache_dict(self) -> Dict[str, Any]:
        """Payload stored by the result cache (no per-attempt data)"""
        return self.to_dict(include_attempts=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineResult":
        return cls(
            text=data["text"],
            confidence=float(data["confidence"]),
            questions=[Question.from_dict(q) for q in data.get("questions", [])],
            processing_info=ProcessingInfo.from_dict(data.get("processingInfo", {})),
            errors=[dict(e) for e in data.get("errors", [])],
            attempts=[dict(a) for a in data.get("attempts", [])],
        )

    def with_cache_flag(self, from_cache: bool) -> "PipelineResult":
        return replace(self, processing_info=replace(self.processing_info, from_cache=from_cache))
