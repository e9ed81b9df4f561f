"""
Extraction Pipeline

Coordinates one extraction run:
cache lookup -> normalize -> enhance -> recognize -> fuse -> correct ->
extract questions -> cache store

Run-level failures (undecodable image, timeout with nothing usable,
cancellation) are raised as PipelineError subclasses. Everything else
degrades into a result carrying confidence and error metadata.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional, Union

from .cache import ResultCache, make_cache_key
from .config import PipelineConfig, get_default_config
from .errors import NoUsableResult, PipelineCancelled, PipelineError, PipelineTimeout
from .models import (
    ExtractionOptions,
    PipelineResult,
    ProcessingInfo,
    RawImage,
    RecognitionAttempt,
)
from .ocr.enhancement import VariantGenerator
from .ocr.fusion import fuse
from .ocr.image_normalizer import ImageNormalizer
from .ocr.image_quality_analyzer import is_low_quality
from .ocr.orchestrator import Orchestrator
from .ocr.text_corrector import TextCorrector
from .ocr.worker_pool import EngineFactory, WorkerPool
from .questions.extractor import QuestionExtractor
from .questions.quality import assess_quality
from .telemetry import NullTelemetry

logger = logging.getLogger(__name__)

OptionsLike = Union[ExtractionOptions, Dict[str, Any], None]


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000.0, 3)


class ExtractionPipeline:
    """
    Turns exam-question images into structured questions.

    The pipeline owns its WorkerPool and hands it to the Orchestrator; the
    pool is created lazily on the first run that misses the cache.

    Example:
        with ExtractionPipeline(get_default_config()) as pipeline:
            result = pipeline.extract(image_bytes, {"subject": "math"})
            for question in result.questions:
                print(question.type, question.question_text)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        engine_factory: Optional[EngineFactory] = None,
        cache: Optional[ResultCache] = None,
        telemetry: Optional[NullTelemetry] = None,
    ):
        self.config = config or get_default_config()
        self.cache = cache if cache is not None else ResultCache.from_config(self.config)
        self.telemetry = telemetry if telemetry is not None else NullTelemetry()

        self.normalizer = ImageNormalizer(self.config)
        self.variant_generator = VariantGenerator(self.config)
        self.corrector = TextCorrector(self.config)
        self.extractor = QuestionExtractor(self.config)
        self.pool = WorkerPool(self.config, engine_factory)
        self.orchestrator: Optional[Orchestrator] = None

        self._init_lock = threading.Lock()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Start the worker pool (no-op if already running)"""
        with self._init_lock:
            if self._initialized:
                return
            self.pool.initialize()
            self.orchestrator = Orchestrator(self.pool, self.config)
            self._initialized = True
            logger.info("Extraction pipeline initialized")

    def cleanup(self) -> None:
        """Stop the orchestrator and release every recognizer"""
        with self._init_lock:
            if self.orchestrator is not None:
                self.orchestrator.shutdown()
                self.orchestrator = None
            self.pool.cleanup()
            self._initialized = False
        logger.info("Extraction pipeline cleaned up")

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    def extract(
        self,
        image_bytes: bytes,
        options: OptionsLike = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        """
        Run the full pipeline over one image.

        Args:
            image_bytes: Complete image file contents
            options: ExtractionOptions or a dict with subject /
                expectedQuestionCount / requestId
            cancel_event: Checked before each stage; setting it cancels the run

        Returns:
            PipelineResult. A run whose attempts all failed returns confidence 0
            and no questions; a run that hit the deadline after some usable
            attempts returns a partial result with processing_info.timed_out set.

        Raises:
            InvalidImage: Buffer could not be decoded
            PipelineTimeout: Deadline passed before any usable attempt
            PipelineCancelled: cancel_event was set
        """
        opts = options if isinstance(options, ExtractionOptions) else ExtractionOptions.from_dict(options)
        started = time.monotonic()

        try:
            result = self._run(image_bytes, opts, cancel_event, started)
        except PipelineError as e:
            logger.warning(f"Extraction failed ({e.kind}) for request {opts.request_id}: {e.message}")
            self.telemetry.record_error(e.kind, e.message, _elapsed_ms(started), opts.request_id)
            raise

        self.telemetry.record_result(result)
        return result

    @contextmanager
    def _stage(
        self,
        name: str,
        timings: Dict[str, float],
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[None]:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled(f"Run cancelled before stage '{name}'")
        stage_started = time.monotonic()
        try:
            yield
        finally:
            timings[name] = _elapsed_ms(stage_started)

    def _run(
        self,
        image_bytes: bytes,
        opts: ExtractionOptions,
        cancel_event: Optional[threading.Event],
        started: float,
    ) -> PipelineResult:
        deadline = started + self.config.pipeline_timeout_seconds
        timings: Dict[str, float] = {}
        errors: List[Dict[str, Any]] = []
        info = ProcessingInfo(request_id=opts.request_id, per_stage_time_ms=timings)

        with self._stage("cache_lookup", timings, cancel_event):
            cached = self.cache.get(image_bytes, opts)
            duplicate = self.cache.check_duplicate(image_bytes)
            self.cache.record_image(image_bytes, make_cache_key(image_bytes, opts))
        info.duplicate_image = duplicate.is_duplicate

        if cached is not None:
            logger.info(f"Serving request {opts.request_id} from cache")
            return replace(cached, processing_info=replace(
                cached.processing_info,
                from_cache=True,
                request_id=opts.request_id,
                duplicate_image=duplicate.is_duplicate,
                per_stage_time_ms=dict(timings),
                total_time_ms=_elapsed_ms(started),
            ))

        with self._stage("normalize", timings, cancel_event):
            normalized, profile = self.normalizer.normalize(RawImage(image_bytes))
        info.image_quality_score = profile.quality_score
        if is_low_quality(profile.quality_score, self.config.low_quality_score):
            info.low_quality_warning = True
            info.warnings.append(
                f"Low image quality ({profile.quality_score:.1f}/100); results may be unreliable"
            )
            logger.warning(f"Low quality image: score={profile.quality_score:.1f}")

        with self._stage("enhance", timings, cancel_event):
            variants = self.variant_generator.generate_variants(normalized, profile.metrics)
        if any(v.is_fallback for v in variants.values()):
            info.fallback_variant_used = True
            info.warnings.append("All enhancement recipes failed; recognized the unprocessed greyscale image")

        self.initialize()

        with self._stage("recognize", timings, cancel_event):
            try:
                outcome = self.orchestrator.recognize(variants, deadline=deadline, cancel_event=cancel_event)
                attempts = outcome.attempts
                info.early_exit = outcome.early_exit
            except PipelineTimeout as e:
                if not any(a.usable for a in e.attempts):
                    raise
                logger.warning(
                    f"Deadline reached with {len(e.attempts)} attempts; returning partial result"
                )
                attempts = e.attempts
                info.timed_out = True
                info.warnings.append("Pipeline deadline reached; result built from completed attempts")
                errors.append(e.to_dict())
        info.attempt_count = len(attempts)

        with self._stage("fuse", timings, cancel_event):
            try:
                fused = fuse(attempts, self.config.corroboration_threshold)
            except NoUsableResult as e:
                logger.warning(f"No usable recognition result: {e.message}")
                errors.append(e.to_dict())
                fused = None

        if fused is None:
            info.total_time_ms = _elapsed_ms(started)
            return self._build_result("", 0.0, [], info, errors, attempts)

        info.chosen_variant = fused.attempt.variant
        info.chosen_worker = fused.attempt.worker_id

        with self._stage("correct", timings, cancel_event):
            corrected = self.corrector.correct(fused.text, opts.subject)

        with self._stage("extract", timings, cancel_event):
            report = self.extractor.extract(corrected.text, opts.expected_question_count)
        errors.extend(issue.to_dict() for issue in report.errors)
        info.quality = assess_quality(corrected, report.questions)

        info.total_time_ms = _elapsed_ms(started)
        result = self._build_result(
            corrected.text, fused.confidence, report.questions, info, errors, attempts
        )

        if not info.timed_out:
            with self._stage("cache_store", timings):
                self.cache.set(image_bytes, opts, result)
            info.total_time_ms = _elapsed_ms(started)

        logger.info(
            f"Extracted {len(result.questions)} questions (conf={result.confidence:.3f}, "
            f"variant={info.chosen_variant}, attempts={info.attempt_count}, "
            f"time={info.total_time_ms:.0f}ms)"
        )
        return result

    @staticmethod
    def _build_result(
        text: str,
        confidence: float,
        questions: list,
        info: ProcessingInfo,
        errors: List[Dict[str, Any]],
        attempts: List[RecognitionAttempt],
    ) -> PipelineResult:
        return PipelineResult(
            text=text,
            confidence=confidence,
            questions=list(questions),
            processing_info=info,
            errors=errors,
            attempts=[a.to_summary() for a in attempts],
        )

    def health_check(self) -> Dict[str, Any]:
        """Pool health plus cache statistics"""
        return {
            "initialized": self._initialized,
            "pool": self.pool.health_check(),
            "cache": self.cache.get_stats(),
        }
