"""
Multi-Engine Orchestrator

Dispatches ranked enhancement variants to the worker pool and collects one
RecognitionAttempt per job.

Dispatch is wave-based: up to pool_size jobs are submitted together, job k
preferring worker k % pool_size, and the whole wave is awaited before the
next one starts. Early exit is only decided at wave boundaries, so the set of
attempts (and therefore the fused result) does not depend on which thread
finishes first. A wave is awaited for at most its attempt budget plus a
grace period; a job still running after that is recorded as timed out and
later waves go ahead on the remaining workers.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from ..config import PipelineConfig
from ..errors import PipelineCancelled, PipelineTimeout
from ..models import EnhancementVariant, RecognitionAttempt
from .base import OCRResult
from .worker_pool import Worker, WorkerPool

logger = logging.getLogger(__name__)

Variants = Union[Sequence[EnhancementVariant], Mapping[str, EnhancementVariant]]

WAVE_GRACE_SECONDS = 1.0


@dataclass
class RecognitionOutcome:
    """Attempts in dispatch order plus how dispatch ended"""
    attempts: List[RecognitionAttempt] = field(default_factory=list)
    early_exit: bool = False
    skipped_variants: List[str] = field(default_factory=list)


class Orchestrator:
    """
    Runs recognition jobs on a shared WorkerPool.

    Example:
        orchestrator = Orchestrator(pool, config)
        outcome = orchestrator.recognize(variants, deadline=time.monotonic() + 60)
        orchestrator.shutdown()
    """

    def __init__(self, pool: WorkerPool, config: Optional[PipelineConfig] = None):
        self.pool = pool
        self.config = config or pool.config
        self._executor = ThreadPoolExecutor(
            max_workers=max(2, pool.size * 2),
            thread_name_prefix="ocr-attempt",
        )

    def recognize(
        self,
        variants: Variants,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RecognitionOutcome:
        """
        Recognize variants in ranked order.

        Args:
            variants: Ranked variants (sequence, or name -> variant mapping in rank order)
            deadline: time.monotonic() value by which all attempts must finish
            cancel_event: Checked before each wave is dispatched

        Returns:
            RecognitionOutcome

        Raises:
            PipelineTimeout: If the deadline passes before a wave completes or a
                worker frees up; carries the attempts completed so far
            PipelineCancelled: If cancel_event is set between waves
        """
        ranked = list(variants.values()) if isinstance(variants, Mapping) else list(variants)
        if deadline is None:
            deadline = time.monotonic() + self.config.pipeline_timeout_seconds

        selected = ranked[:self.config.max_variants]
        outcome = RecognitionOutcome(skipped_variants=[v.name for v in ranked[self.config.max_variants:]])

        jobs: List[Tuple[EnhancementVariant, int]] = [
            (variant, run)
            for variant in selected
            for run in range(self.config.runs_per_variant)
        ]
        wave_size = max(1, self.pool.size)

        for wave_start in range(0, len(jobs), wave_size):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled("Recognition cancelled before dispatch")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PipelineTimeout(
                    f"Pipeline deadline reached after {len(outcome.attempts)} attempts",
                    attempts=outcome.attempts,
                )

            wave = jobs[wave_start:wave_start + wave_size]
            wave_attempts = self._run_wave(wave, wave_start, deadline, outcome.attempts)
            outcome.attempts.extend(wave_attempts)

            if jobs[wave_start + wave_size:] and self._should_exit_early(wave_attempts):
                dispatched = {a.variant for a in outcome.attempts}
                outcome.early_exit = True
                outcome.skipped_variants = [
                    v.name for v in selected if v.name not in dispatched
                ] + outcome.skipped_variants
                logger.info(
                    f"Early exit after {len(outcome.attempts)} attempts "
                    f"(skipping {outcome.skipped_variants})"
                )
                break

        logger.info(
            f"Recognition finished: {len(outcome.attempts)} attempts, "
            f"{sum(1 for a in outcome.attempts if a.usable)} usable"
        )
        return outcome

    def _run_wave(
        self,
        wave: List[Tuple[EnhancementVariant, int]],
        first_index: int,
        deadline: float,
        completed: List[RecognitionAttempt],
    ) -> List[RecognitionAttempt]:
        futures = [
            self._executor.submit(self._run_job, variant, run, first_index + offset, deadline)
            for offset, (variant, run) in enumerate(wave)
        ]

        wait_until = min(deadline, time.monotonic() + self._wave_budget())
        done, not_done = wait(futures, timeout=max(0.0, wait_until - time.monotonic()))

        if not_done and wait_until >= deadline:
            finished = [f.result() for f in futures if f in done and f.exception() is None]
            raise PipelineTimeout(
                f"Pipeline deadline reached with {len(not_done)} attempts still running",
                attempts=completed + finished,
            )

        finished = []
        for offset, f in enumerate(futures):
            if f in not_done:
                # Engine ignored its timeout; the job keeps its worker until it returns
                variant = wave[offset][0]
                logger.warning(
                    f"Attempt {first_index + offset} ({variant.name}) still running after "
                    f"{self._wave_budget():.1f}s; recording it as timed out"
                )
                finished.append(self._straggler(variant, first_index + offset))
                continue
            error = f.exception()
            if isinstance(error, PipelineTimeout):
                raise type(error)(error.message, attempts=completed + finished) from error
            if error is not None:
                raise error
            finished.append(f.result())

        return finished

    def _wave_budget(self) -> float:
        """Attempt budget, doubled when retries are on, plus a grace period"""
        runs = 2 if self.config.retry_on_engine_error else 1
        return self.config.attempt_timeout_seconds * runs + WAVE_GRACE_SECONDS

    def _straggler(self, variant: EnhancementVariant, dispatch_index: int) -> RecognitionAttempt:
        return RecognitionAttempt(
            variant=variant.name,
            worker_id="",
            text="",
            confidence=0.0,
            word_count=0,
            duration_ms=round(self._wave_budget() * 1000.0, 3),
            dispatch_index=dispatch_index,
            error=f"Attempt did not return within {self._wave_budget():.1f}s",
            timed_out=True,
        )

    def _run_job(
        self,
        variant: EnhancementVariant,
        run: int,
        dispatch_index: int,
        deadline: float,
    ) -> RecognitionAttempt:
        wait_budget = max(0.0, deadline - time.monotonic())
        preferred = dispatch_index % max(1, self.pool.size)

        with self.pool.acquire(preferred=preferred, timeout=wait_budget) as worker:
            attempt = self._attempt(worker, variant, variant.image, dispatch_index)

            if attempt.error is not None and not attempt.timed_out and self.config.retry_on_engine_error:
                logger.warning(
                    f"Attempt {dispatch_index} ({variant.name} on {worker.worker_id}) failed: "
                    f"{attempt.error}; retrying at {self.config.retry_scale:.0%} scale"
                )
                attempt = self._attempt(
                    worker,
                    variant,
                    _downscale(variant.image, self.config.retry_scale),
                    dispatch_index,
                    retried=True,
                )

            self.pool.record_result(worker, attempt.error is None and not attempt.timed_out)

        logger.debug(
            f"Attempt {dispatch_index}: variant={variant.name} run={run} worker={attempt.worker_id} "
            f"conf={attempt.confidence:.3f} words={attempt.word_count} "
            f"time={attempt.duration_ms:.0f}ms"
        )
        return attempt

    def _attempt(
        self,
        worker: Worker,
        variant: EnhancementVariant,
        image: np.ndarray,
        dispatch_index: int,
        retried: bool = False,
    ) -> RecognitionAttempt:
        budget = self.config.attempt_timeout_seconds
        start = time.monotonic()
        try:
            result = worker.engine.recognize(image, timeout=budget)
        except Exception as e:
            logger.error(f"Engine on {worker.worker_id} raised: {e}", exc_info=True)
            result = OCRResult(text="", confidence=0.0, error=str(e))
        elapsed = time.monotonic() - start

        error = result.error
        timed_out = result.timed_out or elapsed > budget
        if timed_out and error is None:
            error = f"Attempt exceeded its {budget:.1f}s budget"

        failed = error is not None
        return RecognitionAttempt(
            variant=variant.name,
            worker_id=worker.worker_id,
            text="" if failed else result.text,
            confidence=0.0 if failed else float(max(0.0, min(1.0, result.confidence))),
            word_count=0 if failed else result.word_count,
            duration_ms=round(elapsed * 1000.0, 3),
            dispatch_index=dispatch_index,
            profile=worker.profile.name,
            error=error,
            timed_out=timed_out,
            retried=retried,
        )

    def _should_exit_early(self, wave_attempts: List[RecognitionAttempt]) -> bool:
        if not self.config.early_exit_enabled:
            return False
        threshold = self.config.early_exit_confidence
        return any(a.usable and a.confidence > threshold for a in wave_attempts)

    def shutdown(self) -> None:
        """Stop accepting jobs; running attempts finish in the background"""
        self._executor.shutdown(wait=False)


def _downscale(image: np.ndarray, scale: float) -> np.ndarray:
    h, w = image.shape[:2]
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)
