"""
Pipeline Configuration and Hardware Detection

The core never reads the environment itself; callers build a PipelineConfig
(usually via get_default_config) and hand it to the pipeline.
"""

import logging
import platform
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List

import psutil

logger = logging.getLogger(__name__)

# Tesseract page segmentation modes by profile name
SEGMENTATION_MODES: Dict[str, int] = {
    "auto": 3,
    "single_column": 4,
    "single_block": 6,
    "single_line": 7,
    "sparse": 11,
}

MIN_POOL_SIZE = 2
MAX_POOL_SIZE = 4


@dataclass
class PipelineConfig:
    """Resolved tunables for one ExtractionPipeline"""
    # Engine
    engine: str = "tesseract"
    languages: List[str] = field(default_factory=lambda: ["eng"])
    oem: int = 3

    # Worker pool
    pool_size: int = 2
    segmentation_profiles: List[str] = field(default_factory=lambda: ["single_block", "auto"])

    # Timing
    attempt_timeout_seconds: float = 20.0
    pipeline_timeout_seconds: float = 60.0

    # Dispatch
    max_variants: int = 3
    runs_per_variant: int = 1
    early_exit_enabled: bool = True
    early_exit_confidence: float = 0.85
    retry_on_engine_error: bool = True
    retry_scale: float = 0.6

    # Normalization
    high_res_bound: int = 3000
    max_working_dimension: int = 2400
    low_res_width: int = 800
    low_res_height: int = 600
    min_upscale_factor: float = 1.5

    # Quality assessment
    blur_threshold: float = 100.0
    contrast_threshold: float = 40.0
    noise_threshold: float = 50.0
    low_quality_score: float = 40.0

    # Enhancement
    otsu_bias: float = 0.85
    otsu_min_threshold: int = 40
    max_blur_sigma: float = 2.0

    # Fusion
    corroboration_threshold: float = 0.9

    # Extraction
    min_block_chars: int = 10
    dedupe_threshold: float = 0.85

    # Correction
    math_subjects: List[str] = field(
        default_factory=lambda: ["math", "mathematics", "physics", "chemistry", "statistics"]
    )
    enable_word_segmentation: bool = True

    # Result cache
    cache_enabled: bool = True
    cache_max_entries: int = 100
    cache_max_bytes: int = 50 * 1024 * 1024
    cache_max_age_seconds: float = 3600.0
    duplicate_index_max_entries: int = 1000
    duplicate_index_ttl_seconds: float = 600.0

    # Telemetry alert thresholds
    max_processing_time_seconds: float = 30.0
    min_acceptable_confidence: float = 0.5

    def __post_init__(self):
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")
        if self.max_variants < 1:
            raise ValueError(f"max_variants must be >= 1, got {self.max_variants}")
        if self.runs_per_variant < 1:
            raise ValueError(f"runs_per_variant must be >= 1, got {self.runs_per_variant}")
        unknown = [p for p in self.segmentation_profiles if p not in SEGMENTATION_MODES]
        if unknown or not self.segmentation_profiles:
            raise ValueError(
                f"Unknown segmentation profiles {unknown}; "
                f"choose from {sorted(SEGMENTATION_MODES)}"
            )

    def profile_for_worker(self, index: int) -> str:
        """Segmentation profile for worker `index` (profiles cycle over workers)"""
        return self.segmentation_profiles[index % len(self.segmentation_profiles)]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Build a config from a mapping, ignoring (and logging) unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {unknown}")
        return cls(**{k: v for k, v in data.items() if k in known})


def get_system_memory_gb() -> float:
    """Get total system memory in GB"""
    return psutil.virtual_memory().total / (1024 ** 3)


def get_available_memory_gb() -> float:
    """Get currently available system memory in GB"""
    return psutil.virtual_memory().available / (1024 ** 3)


def get_optimal_pool_size(physical_cores: int = None) -> int:
    """
    Recommended number of recognizer workers.

    Tesseract is single-threaded per call, so one worker per physical core is
    the ceiling; the pool stays small to leave room for the rest of the request.

    Args:
        physical_cores: Core count (auto-detected if None)

    Returns:
        Worker count clamped to [2, 4]
    """
    if physical_cores is None:
        physical_cores = psutil.cpu_count(logical=False) or psutil.cpu_count() or 1
    return max(MIN_POOL_SIZE, min(MAX_POOL_SIZE, int(physical_cores)))


def detect_hardware_capabilities() -> Dict[str, Any]:
    """
    Detect hardware relevant to sizing the recognizer pool.

    Returns:
        Dictionary with hardware information
    """
    physical = psutil.cpu_count(logical=False) or 0
    logical = psutil.cpu_count(logical=True) or 0

    capabilities = {
        "platform": platform.system(),
        "cpu_count": physical,
        "cpu_count_logical": logical,
        "system_memory_gb": round(get_system_memory_gb(), 2),
        "available_memory_gb": round(get_available_memory_gb(), 2),
        "recommended_pool_size": get_optimal_pool_size(physical or None),
    }

    logger.info(f"Hardware capabilities detected: {capabilities}")
    return capabilities


def get_default_config(**overrides) -> PipelineConfig:
    """
    Get default pipeline configuration sized for this machine.

    Args:
        **overrides: Any PipelineConfig field to override

    Returns:
        PipelineConfig with optimal settings
    """
    values: Dict[str, Any] = {"pool_size": get_optimal_pool_size()}
    values.update(overrides)
    config = PipelineConfig.from_dict(values)

    logger.info(
        f"Default config: engine={config.engine}, pool_size={config.pool_size}, "
        f"profiles={config.segmentation_profiles}, cache={'on' if config.cache_enabled else 'off'}"
    )
    return config
