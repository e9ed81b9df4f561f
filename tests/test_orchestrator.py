"""
Unit Tests for the multi-engine Orchestrator
"""

import threading
import time

import pytest

from question_ocr.errors import PipelineCancelled, PipelineTimeout
from question_ocr.ocr.base import OCRResult
from question_ocr.ocr.orchestrator import Orchestrator
from question_ocr.ocr.worker_pool import WorkerPool

from conftest import FakeEngineFactory, fixed_text, make_config, make_variant


@pytest.fixture
def build():
    """Factory fixture: build(responder, delay=0.0, **config) -> (orchestrator, factory)"""
    created = []

    def _build(responder=None, delay=0.0, **overrides):
        factory = FakeEngineFactory(responder=responder, delay=delay)
        pool = WorkerPool(make_config(**overrides), factory)
        pool.initialize()
        orchestrator = Orchestrator(pool)
        created.append((orchestrator, pool))
        return orchestrator, factory

    yield _build

    for orchestrator, pool in created:
        orchestrator.shutdown()
        pool.cleanup()


def _variants(*names, size=40):
    return [make_variant(name, rank=i, size=size) for i, name in enumerate(names)]


class TestDispatch:
    """Test dispatch order and worker assignment"""

    def test_attempts_in_dispatch_order(self, build):
        orchestrator, _ = build(fixed_text("Some text", 0.5), early_exit_enabled=False)

        outcome = orchestrator.recognize(_variants("a", "b", "c"))

        assert [a.variant for a in outcome.attempts] == ["a", "b", "c"]
        assert [a.dispatch_index for a in outcome.attempts] == [0, 1, 2]
        assert not outcome.early_exit

    def test_job_prefers_worker_by_index(self, build):
        orchestrator, _ = build(fixed_text("Some text", 0.5), early_exit_enabled=False, pool_size=2)

        outcome = orchestrator.recognize(_variants("a", "b", "c"))

        assert [a.worker_id for a in outcome.attempts] == ["worker-0", "worker-1", "worker-0"]
        assert [a.profile for a in outcome.attempts] == ["single_block", "auto", "single_block"]

    def test_max_variants_cap(self, build):
        orchestrator, factory = build(fixed_text("Some text", 0.5), max_variants=2, early_exit_enabled=False)

        outcome = orchestrator.recognize(_variants("a", "b", "c", "d"))

        assert [a.variant for a in outcome.attempts] == ["a", "b"]
        assert outcome.skipped_variants == ["c", "d"]
        assert factory.call_count == 2

    def test_runs_per_variant(self, build):
        orchestrator, _ = build(
            fixed_text("Some text", 0.5), runs_per_variant=2, max_variants=2, early_exit_enabled=False
        )

        outcome = orchestrator.recognize(_variants("a", "b"))

        assert [a.variant for a in outcome.attempts] == ["a", "a", "b", "b"]

    def test_accepts_mapping_in_rank_order(self, build):
        orchestrator, _ = build(fixed_text("Some text", 0.5), early_exit_enabled=False)
        variants = {v.name: v for v in _variants("x", "y")}

        outcome = orchestrator.recognize(variants)

        assert [a.variant for a in outcome.attempts] == ["x", "y"]


class TestEarlyExit:
    """Test early exit at wave boundaries"""

    def test_exits_after_confident_wave(self, build):
        orchestrator, factory = build(fixed_text("Confident text", 0.95), pool_size=2, max_variants=3)

        outcome = orchestrator.recognize(_variants("a", "b", "c"))

        assert outcome.early_exit
        assert [a.variant for a in outcome.attempts] == ["a", "b"]
        assert outcome.skipped_variants == ["c"]
        assert factory.call_count == 2

    def test_no_exit_below_threshold(self, build):
        orchestrator, _ = build(fixed_text("Unsure text", 0.6), pool_size=2, max_variants=3)

        outcome = orchestrator.recognize(_variants("a", "b", "c"))

        assert not outcome.early_exit
        assert len(outcome.attempts) == 3

    def test_no_exit_flag_when_nothing_remains(self, build):
        orchestrator, _ = build(fixed_text("Confident text", 0.95), pool_size=2, max_variants=2)

        outcome = orchestrator.recognize(_variants("a", "b"))

        assert not outcome.early_exit
        assert len(outcome.attempts) == 2

    def test_threshold_must_be_exceeded(self, build):
        orchestrator, _ = build(fixed_text("Borderline text", 0.85), pool_size=2, max_variants=3)
        assert orchestrator.config.early_exit_confidence == 0.85

        outcome = orchestrator.recognize(_variants("a", "b", "c"))

        assert not outcome.early_exit
        assert len(outcome.attempts) == 3


class TestFailures:
    """Test engine errors, retries and timeouts"""

    def test_engine_exception_retried_at_smaller_scale(self, build):
        def respond(engine, image):
            if image.shape == (40, 40):
                return RuntimeError("engine crashed")
            return OCRResult(text="Recovered text", confidence=0.7)

        orchestrator, factory = build(respond, max_variants=1)

        outcome = orchestrator.recognize(_variants("a"))

        attempt = outcome.attempts[0]
        assert attempt.retried
        assert attempt.error is None
        assert attempt.text == "Recovered text"
        assert factory.engines[0].calls == [(40, 40), (24, 24)]

    def test_failed_retry_recorded_as_unusable(self, build):
        orchestrator, _ = build(lambda engine, image: OCRResult("", 0.0, error="bad image"), max_variants=1)

        outcome = orchestrator.recognize(_variants("a"))

        attempt = outcome.attempts[0]
        assert attempt.error == "bad image"
        assert attempt.confidence == 0.0
        assert not attempt.usable

    def test_retry_disabled(self, build):
        orchestrator, factory = build(
            lambda engine, image: OCRResult("", 0.0, error="bad image"),
            max_variants=1,
            retry_on_engine_error=False,
        )

        outcome = orchestrator.recognize(_variants("a"))

        assert not outcome.attempts[0].retried
        assert factory.call_count == 1

    def test_engine_timeout_not_retried(self, build):
        orchestrator, factory = build(
            lambda engine, image: OCRResult("", 0.0, error="Tesseract process timeout", timed_out=True),
            max_variants=1,
        )

        outcome = orchestrator.recognize(_variants("a"))

        assert outcome.attempts[0].timed_out
        assert factory.call_count == 1

    def test_slow_attempt_marked_timed_out(self, build):
        orchestrator, _ = build(
            fixed_text("Late text", 0.9), delay=0.3, max_variants=1, attempt_timeout_seconds=0.1
        )

        outcome = orchestrator.recognize(_variants("a"))

        attempt = outcome.attempts[0]
        assert attempt.timed_out
        assert attempt.text == ""
        assert not attempt.usable

    def test_deadline_without_attempts(self, build):
        orchestrator, _ = build(fixed_text("Slow text", 0.9), delay=0.5, max_variants=1)

        with pytest.raises(PipelineTimeout) as exc_info:
            orchestrator.recognize(_variants("a"), deadline=time.monotonic() + 0.1)

        assert exc_info.value.attempts == []

    def test_deadline_keeps_completed_attempts(self, build):
        def respond(engine, image):
            if image.shape[0] == 41:
                time.sleep(1.0)
            return OCRResult(text="Some text", confidence=0.5)

        orchestrator, _ = build(respond, pool_size=2, max_variants=3, early_exit_enabled=False)
        variants = _variants("a", "b") + [make_variant("c", rank=2, size=41)]

        with pytest.raises(PipelineTimeout) as exc_info:
            orchestrator.recognize(variants, deadline=time.monotonic() + 0.5)

        assert [a.variant for a in exc_info.value.attempts] == ["a", "b"]

    def test_unresponsive_engine_does_not_stall_later_waves(self, build):
        # The first variant's engine sleeps through its timeout
        def respond(engine, image):
            if image.shape[0] == 41:
                time.sleep(3.0)
            return OCRResult(text="Some text", confidence=0.5)

        orchestrator, _ = build(
            respond, pool_size=2, max_variants=3, early_exit_enabled=False, attempt_timeout_seconds=0.2
        )
        variants = [make_variant("a", rank=0, size=41), make_variant("b", rank=1), make_variant("c", rank=2)]

        started = time.monotonic()
        outcome = orchestrator.recognize(variants, deadline=time.monotonic() + 10.0)

        assert time.monotonic() - started < 2.5
        assert [a.variant for a in outcome.attempts] == ["a", "b", "c"]
        assert outcome.attempts[0].timed_out
        assert not outcome.attempts[0].usable
        assert outcome.attempts[1].usable
        assert outcome.attempts[2].usable
        assert outcome.attempts[2].worker_id == "worker-1"

    def test_cancelled_before_dispatch(self, build):
        orchestrator, factory = build(fixed_text("Some text", 0.9))
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(PipelineCancelled):
            orchestrator.recognize(_variants("a"), cancel_event=cancel)

        assert factory.call_count == 0

    def test_pool_released_after_run(self, build):
        orchestrator, _ = build(lambda engine, image: RuntimeError("always fails"), max_variants=3)

        orchestrator.recognize(_variants("a", "b", "c"))

        assert orchestrator.pool.available_count == orchestrator.pool.size
