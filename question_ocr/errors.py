"""
Error taxonomy for the extraction pipeline.

Run-level failures (undecodable image, overall timeout, cancellation) are raised
as PipelineError subclasses. Stage-local failures are recorded on the result
instead of being raised.
"""

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for run-level failures with a machine-readable kind"""

    kind = "pipeline_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured form sent to callers"""
        return {"kind": self.kind, "message": self.message}


class InvalidImage(PipelineError):
    """Image buffer could not be decoded"""

    kind = "invalid_image"


class NoUsableResult(PipelineError):
    """Every recognition attempt failed or produced nothing"""

    kind = "no_usable_result"


class PipelineTimeout(PipelineError):
    """
    Overall or per-worker time budget exceeded.

    Attributes:
        attempts: Recognition attempts that completed before the deadline
    """

    kind = "timeout"

    def __init__(self, message: str, attempts: Optional[List[Any]] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class WorkerUnavailable(PipelineTimeout):
    """No recognizer worker became free within the wait budget"""


class PipelineCancelled(PipelineError):
    """Run was cancelled between stages"""

    kind = "cancelled"


class ExtractionError(PipelineError):
    """A question block failed validation"""

    kind = "extraction_error"

    def __init__(self, message: str, block_index: int):
        super().__init__(message)
        self.block_index = block_index


class EngineError(RuntimeError):
    """Recognizer could not be initialized or is unusable"""
