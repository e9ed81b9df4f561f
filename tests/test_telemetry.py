"""
Unit Tests for PerformanceMonitor
"""

import pytest

from question_ocr.models import PipelineResult, ProcessingInfo
from question_ocr.telemetry import NullTelemetry, PerformanceMonitor


def make_result(confidence=0.9, total_time_ms=100.0, errors=None, **info):
    return PipelineResult(
        text="text",
        confidence=confidence,
        processing_info=ProcessingInfo(
            total_time_ms=total_time_ms,
            per_stage_time_ms={"normalize": 10.0, "recognize": 80.0},
            **info,
        ),
        errors=errors or [],
    )


@pytest.fixture
def monitor():
    return PerformanceMonitor(max_processing_time_seconds=1.0, min_acceptable_confidence=0.5)


class TestRecording:
    """Test counters"""

    def test_successful_run(self, monitor):
        monitor.record_result(make_result(chosen_variant="standard", early_exit=True))

        summary = monitor.get_summary()

        assert summary["total_runs"] == 1
        assert summary["successful_runs"] == 1
        assert summary["success_rate"] == 1.0
        assert summary["early_exits"] == 1
        assert summary["variant_wins"] == {"standard": 1}
        assert summary["avg_confidence"] == 0.9
        assert summary["stages"]["recognize"]["avg_ms"] == 80.0

    def test_no_usable_result_counts_as_failure(self, monitor):
        monitor.record_result(make_result(confidence=0.0, errors=[{"kind": "no_usable_result", "message": "x"}]))

        summary = monitor.get_summary()

        assert summary["failed_runs"] == 1
        assert summary["errors_by_kind"] == {"no_usable_result": 1}

    def test_extraction_issues_do_not_fail_run(self, monitor):
        monitor.record_result(make_result(errors=[{"kind": "extraction_error", "message": "x"}]))

        assert monitor.get_summary()["successful_runs"] == 1

    def test_cache_hits_excluded_from_confidence(self, monitor):
        monitor.record_result(make_result(confidence=0.8, chosen_variant="standard"))
        monitor.record_result(make_result(confidence=0.2, from_cache=True, chosen_variant="standard"))

        summary = monitor.get_summary()

        assert summary["cache_hits"] == 1
        assert summary["avg_confidence"] == 0.8
        assert summary["variant_wins"] == {"standard": 1}

    def test_partial_and_low_quality(self, monitor):
        monitor.record_result(make_result(timed_out=True, low_quality_warning=True))

        summary = monitor.get_summary()

        assert summary["partial_runs"] == 1
        assert summary["low_quality_runs"] == 1

    def test_record_error(self, monitor):
        monitor.record_error("timeout", "too slow", elapsed_ms=500.0, request_id="r1")
        monitor.record_error("cancelled", "stop")

        summary = monitor.get_summary()

        assert summary["total_runs"] == 2
        assert summary["failed_runs"] == 2
        assert summary["errors_by_kind"] == {"timeout": 1, "cancelled": 1}
        assert summary["avg_time_ms"] == 500.0


class TestAlerts:
    """Test threshold alerts"""

    def test_slow_processing(self, monitor):
        monitor.record_result(make_result(total_time_ms=1500.0, request_id="slow"))

        alerts = monitor.get_summary()["recent_alerts"]

        assert [a["type"] for a in alerts] == ["slow_processing"]
        assert alerts[0]["request_id"] == "slow"

    def test_low_confidence(self, monitor):
        monitor.record_result(make_result(confidence=0.3))

        assert [a["type"] for a in monitor.get_summary()["recent_alerts"]] == ["low_confidence"]

    def test_alerts_bounded(self):
        monitor = PerformanceMonitor(min_acceptable_confidence=0.5, max_alerts=3)
        for _ in range(5):
            monitor.record_result(make_result(confidence=0.1))

        assert len(monitor.alerts) == 3


class TestSummary:
    """Test summary shape and reset"""

    def test_memory_figures(self, monitor):
        memory = monitor.get_summary()["memory"]

        assert memory["rss_mb"] > 0
        assert set(memory) == {"rss_mb", "vms_mb", "percent", "available_mb"}

    def test_history_bounded(self):
        monitor = PerformanceMonitor(history_size=5)
        for i in range(10):
            monitor.record_result(make_result(total_time_ms=float(i)))

        assert list(monitor.total_times) == [5.0, 6.0, 7.0, 8.0, 9.0]

    def test_reset(self, monitor):
        monitor.record_result(make_result())

        monitor.reset()

        summary = monitor.get_summary()
        assert summary["total_runs"] == 0
        assert summary["success_rate"] == 0.0
        assert summary["stages"] == {}


def test_null_telemetry_accepts_everything():
    sink = NullTelemetry()

    sink.record_result(make_result())
    sink.record_error("timeout", "x", 1.0, "r")
