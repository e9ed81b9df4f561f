"""
Telemetry sinks for pipeline runs.

The pipeline reports every run to a sink; NullTelemetry discards events and
is used when the caller supplies none. PerformanceMonitor keeps bounded
in-process history, process memory figures and threshold alerts.
"""

import logging
import threading
import time
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional

import psutil

from .models import PipelineResult

logger = logging.getLogger(__name__)


class NullTelemetry:
    """Telemetry sink that ignores everything"""

    def record_result(self, result: PipelineResult) -> None:
        pass

    def record_error(
        self,
        kind: str,
        message: str,
        elapsed_ms: float = 0.0,
        request_id: Optional[str] = None,
    ) -> None:
        pass


def _percentile(values: List[float], pct: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, int(round(pct / 100.0 * (len(ordered) - 1)))))
    return ordered[index]


class PerformanceMonitor(NullTelemetry):
    """
    Aggregates run statistics for health reporting.

    Example:
        monitor = PerformanceMonitor(max_processing_time_seconds=30)
        pipeline = ExtractionPipeline(config, telemetry=monitor)
        ...
        monitor.get_summary()
    """

    def __init__(
        self,
        max_processing_time_seconds: float = 30.0,
        min_acceptable_confidence: float = 0.5,
        history_size: int = 100,
        max_alerts: int = 50,
    ):
        self.max_processing_time_seconds = max_processing_time_seconds
        self.min_acceptable_confidence = min_acceptable_confidence
        self.history_size = history_size
        self.max_alerts = max_alerts
        self.process = psutil.Process()
        self._lock = threading.Lock()
        self.reset()

    @classmethod
    def from_config(cls, config) -> "PerformanceMonitor":
        return cls(
            max_processing_time_seconds=config.max_processing_time_seconds,
            min_acceptable_confidence=config.min_acceptable_confidence,
        )

    def reset(self) -> None:
        """Forget all recorded runs"""
        with self._lock:
            self.counts: Counter = Counter()
            self.errors_by_kind: Counter = Counter()
            self.total_times: Deque[float] = deque(maxlen=self.history_size)
            self.confidences: Deque[float] = deque(maxlen=self.history_size)
            self.stage_times: Dict[str, Deque[float]] = {}
            self.variant_wins: Counter = Counter()
            self.alerts: Deque[Dict[str, Any]] = deque(maxlen=self.max_alerts)
            self.started_at = time.time()

    def record_result(self, result: PipelineResult) -> None:
        info = result.processing_info
        failed_kinds = [e.get("kind") for e in result.errors if e.get("kind") == "no_usable_result"]

        with self._lock:
            self.counts["total"] += 1
            if failed_kinds:
                self.counts["failed"] += 1
                self.errors_by_kind.update(failed_kinds)
            else:
                self.counts["successful"] += 1
            if info.from_cache:
                self.counts["cache_hits"] += 1
            if info.timed_out:
                self.counts["partial"] += 1
            if info.low_quality_warning:
                self.counts["low_quality"] += 1
            if info.early_exit:
                self.counts["early_exit"] += 1

            self.total_times.append(info.total_time_ms)
            for stage, ms in info.per_stage_time_ms.items():
                self.stage_times.setdefault(stage, deque(maxlen=self.history_size)).append(ms)
            if not info.from_cache:
                self.confidences.append(result.confidence)
                if info.chosen_variant:
                    self.variant_wins[info.chosen_variant] += 1

        self._check_thresholds(result)

    def record_error(
        self,
        kind: str,
        message: str,
        elapsed_ms: float = 0.0,
        request_id: Optional[str] = None,
    ) -> None:
        with self._lock:
            self.counts["total"] += 1
            self.counts["failed"] += 1
            self.errors_by_kind[kind] += 1
            if elapsed_ms:
                self.total_times.append(elapsed_ms)
        logger.debug(f"Recorded pipeline error {kind} (request={request_id}): {message}")

    def _check_thresholds(self, result: PipelineResult) -> None:
        info = result.processing_info
        if info.total_time_ms > self.max_processing_time_seconds * 1000:
            self._alert(
                "slow_processing",
                f"Run took {info.total_time_ms / 1000:.1f}s "
                f"(limit {self.max_processing_time_seconds:.0f}s)",
                info.request_id,
            )
        if not info.from_cache and result.confidence < self.min_acceptable_confidence:
            self._alert(
                "low_confidence",
                f"Result confidence {result.confidence:.2f} below "
                f"{self.min_acceptable_confidence:.2f}",
                info.request_id,
            )

    def _alert(self, alert_type: str, message: str, request_id: Optional[str]) -> None:
        with self._lock:
            self.alerts.append({
                "type": alert_type,
                "message": message,
                "request_id": request_id,
                "timestamp": time.time(),
            })
        logger.warning(f"Performance alert [{alert_type}]: {message}")

    def memory_usage(self) -> Dict[str, float]:
        mem = self.process.memory_info()
        return {
            "rss_mb": round(mem.rss / (1024 * 1024), 2),
            "vms_mb": round(mem.vms / (1024 * 1024), 2),
            "percent": round(self.process.memory_percent(), 2),
            "available_mb": round(psutil.virtual_memory().available / (1024 * 1024), 2),
        }

    def get_summary(self) -> Dict[str, Any]:
        """Counts, timing percentiles, confidence and recent alerts"""
        with self._lock:
            total = self.counts["total"]
            times = list(self.total_times)
            confidences = list(self.confidences)
            stages = {
                stage: {
                    "avg_ms": round(sum(values) / len(values), 3) if values else 0.0,
                    "p95_ms": round(_percentile(list(values), 95), 3),
                }
                for stage, values in self.stage_times.items()
            }
            summary = {
                "uptime_seconds": round(time.time() - self.started_at, 3),
                "total_runs": total,
                "successful_runs": self.counts["successful"],
                "failed_runs": self.counts["failed"],
                "partial_runs": self.counts["partial"],
                "cache_hits": self.counts["cache_hits"],
                "low_quality_runs": self.counts["low_quality"],
                "early_exits": self.counts["early_exit"],
                "success_rate": self.counts["successful"] / total if total else 0.0,
                "avg_time_ms": round(sum(times) / len(times), 3) if times else 0.0,
                "p95_time_ms": round(_percentile(times, 95), 3),
                "avg_confidence": round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
                "stages": stages,
                "errors_by_kind": dict(self.errors_by_kind),
                "variant_wins": dict(self.variant_wins),
                "recent_alerts": list(self.alerts)[-10:],
            }

        summary["memory"] = self.memory_usage()
        return summary
