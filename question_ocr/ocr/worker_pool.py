"""
Recognizer Worker Pool

A fixed set of long-lived engines, each pre-tuned with a page segmentation
profile. A worker serves one attempt at a time; acquire() is a scoped handle,
so a worker is released on every exit path of the with-block.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from ..config import PipelineConfig
from ..errors import EngineError, WorkerUnavailable
from .base import OCREngine, SegmentationProfile

logger = logging.getLogger(__name__)

EngineFactory = Callable[[SegmentationProfile, PipelineConfig], OCREngine]


def default_engine_factory(profile: SegmentationProfile, config: PipelineConfig) -> OCREngine:
    from .engines import create_engine
    return create_engine(config.engine, profile, config)


@dataclass
class Worker:
    """One recognizer slot in the pool"""
    worker_id: str
    index: int
    engine: OCREngine
    busy: bool = False
    jobs_completed: int = 0
    failures: int = 0

    @property
    def profile(self) -> SegmentationProfile:
        return self.engine.profile

    def to_dict(self) -> Dict:
        return {
            "worker_id": self.worker_id,
            "profile": self.profile.name,
            "busy": self.busy,
            "jobs_completed": self.jobs_completed,
            "failures": self.failures,
            "available": self.engine.is_available(),
        }


class WorkerPool:
    """
    Fixed-size pool of recognizer workers.

    Example:
        pool = WorkerPool(config)
        pool.initialize()
        with pool.acquire(preferred=0, timeout=5.0) as worker:
            result = worker.engine.recognize(image)
        pool.cleanup()
    """

    def __init__(self, config: Optional[PipelineConfig] = None, engine_factory: Optional[EngineFactory] = None):
        self.config = config or PipelineConfig()
        self.engine_factory = engine_factory or default_engine_factory
        self._condition = threading.Condition()
        self._workers: List[Worker] = []
        self._initialized = False

    @property
    def size(self) -> int:
        return self.config.pool_size

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Create and initialize every worker's engine"""
        if self._initialized:
            return

        workers = []
        try:
            for index in range(self.config.pool_size):
                profile = SegmentationProfile.named(self.config.profile_for_worker(index))
                engine = self.engine_factory(profile, self.config)
                engine.initialize()
                workers.append(Worker(worker_id=f"worker-{index}", index=index, engine=engine))
        except Exception as e:
            for worker in workers:
                worker.engine.cleanup()
            raise EngineError(f"Failed to initialize worker pool: {e}") from e

        with self._condition:
            self._workers = workers
            self._initialized = True

        logger.info(
            f"Worker pool ready: {len(workers)} workers "
            f"({', '.join(w.profile.name for w in workers)})"
        )

    @contextmanager
    def acquire(self, preferred: Optional[int] = None, timeout: Optional[float] = None) -> Iterator[Worker]:
        """
        Borrow a free worker for the duration of a with-block.

        Args:
            preferred: Index of the worker to use when it is free
            timeout: Seconds to wait for any worker (None waits indefinitely)

        Raises:
            WorkerUnavailable: If no worker frees up within timeout
        """
        worker = self._checkout(preferred, timeout)
        try:
            yield worker
        finally:
            self._release(worker)

    def record_result(self, worker: Worker, success: bool) -> None:
        with self._condition:
            worker.jobs_completed += 1
            if not success:
                worker.failures += 1

    def _checkout(self, preferred: Optional[int], timeout: Optional[float]) -> Worker:
        if not self._initialized:
            raise RuntimeError("Worker pool not initialized")

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while True:
                worker = self._pick_free(preferred)
                if worker is not None:
                    worker.busy = True
                    logger.debug(f"Acquired {worker.worker_id} (preferred={preferred})")
                    return worker

                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise WorkerUnavailable(
                        f"No recognizer worker became free within {timeout:.2f}s"
                    )
                self._condition.wait(remaining)

    def _pick_free(self, preferred: Optional[int]) -> Optional[Worker]:
        if preferred is not None and self._workers:
            candidate = self._workers[preferred % len(self._workers)]
            if not candidate.busy:
                return candidate
        for worker in self._workers:
            if not worker.busy:
                return worker
        return None

    def _release(self, worker: Worker) -> None:
        with self._condition:
            worker.busy = False
            self._condition.notify()
        logger.debug(f"Released {worker.worker_id}")

    @property
    def available_count(self) -> int:
        with self._condition:
            return sum(1 for w in self._workers if not w.busy)

    @property
    def busy_count(self) -> int:
        with self._condition:
            return sum(1 for w in self._workers if w.busy)

    def health_check(self) -> Dict:
        """Snapshot of pool availability and per-worker counters"""
        with self._condition:
            workers = [w.to_dict() for w in self._workers]
        available = sum(1 for w in workers if not w["busy"])
        healthy = self._initialized and all(w["available"] for w in workers)
        return {
            "healthy": healthy,
            "initialized": self._initialized,
            "total_workers": len(workers),
            "available_workers": available,
            "busy_workers": len(workers) - available,
            "workers": workers,
        }

    def cleanup(self) -> None:
        """Release every engine; the pool must be re-initialized before reuse"""
        with self._condition:
            workers, self._workers = self._workers, []
            self._initialized = False
            self._condition.notify_all()

        for worker in workers:
            try:
                worker.engine.cleanup()
            except Exception as e:
                logger.warning(f"Cleanup of {worker.worker_id} failed: {e}")
        if workers:
            logger.info(f"Worker pool cleaned up ({len(workers)} workers)")

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False
