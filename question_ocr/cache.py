"""
Result Cache

In-memory, content-addressed cache of final pipeline results, plus a larger,
shorter-lived index of image hashes used only to tell the caller that an
image has been seen before.

Key = sha256(image bytes) + sha256(canonical processing options). Entries
expire after max_age_seconds and are evicted least-recently-accessed first
once the entry count or total size passes its cap, down to 80% of the caps.
"""

import hashlib
import json
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from .config import PipelineConfig
from .models import ExtractionOptions, PipelineResult

logger = logging.getLogger(__name__)

EVICTION_TARGET = 0.8

OptionsLike = Union[ExtractionOptions, Dict[str, Any], None]


@dataclass
class CacheEntry:
    """One cached result (serialized, so callers cannot mutate it)"""
    key: str
    payload: str
    size_bytes: int
    created_at: float
    last_accessed: float
    hits: int = 0


@dataclass(frozen=True)
class DuplicateCheck:
    """Whether an image's exact bytes were seen recently"""
    is_duplicate: bool
    times_seen: int = 0
    first_seen: Optional[float] = None
    cache_key: Optional[str] = None


def _as_options(options: OptionsLike) -> ExtractionOptions:
    if isinstance(options, ExtractionOptions):
        return options
    return ExtractionOptions.from_dict(options)


def image_hash(image_bytes: bytes) -> str:
    return hashlib.sha256(image_bytes).hexdigest()


def options_hash(options: OptionsLike) -> str:
    """Hash of the processing-relevant options in canonical JSON form"""
    canonical = json.dumps(_as_options(options).canonical(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def make_cache_key(image_bytes: bytes, options: OptionsLike = None) -> str:
    return f"{image_hash(image_bytes)}:{options_hash(options)}"


class ResultCache:
    """
    Thread-safe LRU/TTL cache of PipelineResults.

    Example:
        cache = ResultCache.from_config(config)
        cached = cache.get(image_bytes, options)
        if cached is None:
            result = run_pipeline(...)
            cache.set(image_bytes, options, result)
    """

    def __init__(
        self,
        max_entries: int = 100,
        max_bytes: int = 50 * 1024 * 1024,
        max_age_seconds: float = 3600.0,
        enabled: bool = True,
        duplicate_index_max_entries: int = 1000,
        duplicate_index_ttl_seconds: float = 600.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.max_age_seconds = max_age_seconds
        self.enabled = enabled
        self.duplicate_index_max_entries = duplicate_index_max_entries
        self.duplicate_index_ttl_seconds = duplicate_index_ttl_seconds
        self._clock = clock or time.time

        self._lock = threading.RLock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._seen_images: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._total_bytes = 0
        self._stats = {"hits": 0, "misses": 0, "stores": 0, "evictions": 0, "expired": 0}

        logger.info(
            f"Result cache initialized: enabled={enabled}, max_entries={max_entries}, "
            f"max_bytes={max_bytes}, max_age={max_age_seconds}s"
        )

    @classmethod
    def from_config(cls, config: PipelineConfig, clock: Optional[Callable[[], float]] = None) -> "ResultCache":
        return cls(
            max_entries=config.cache_max_entries,
            max_bytes=config.cache_max_bytes,
            max_age_seconds=config.cache_max_age_seconds,
            enabled=config.cache_enabled,
            duplicate_index_max_entries=config.duplicate_index_max_entries,
            duplicate_index_ttl_seconds=config.duplicate_index_ttl_seconds,
            clock=clock,
        )

    def get(self, image_bytes: bytes, options: OptionsLike = None) -> Optional[PipelineResult]:
        """
        Cached result for these image bytes and options, or None.

        Expired entries are removed on read.
        """
        if not self.enabled:
            return None

        key = make_cache_key(image_bytes, options)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            now = self._clock()
            if now - entry.created_at > self.max_age_seconds:
                self._remove(key)
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                logger.debug(f"Cache entry expired: {key[:16]}...")
                return None

            entry.last_accessed = now
            entry.hits += 1
            self._entries.move_to_end(key)
            self._stats["hits"] += 1
            payload = entry.payload

        logger.debug(f"Cache hit: {key[:16]}...")
        return PipelineResult.from_dict(json.loads(payload)).with_cache_flag(True)

    def set(self, image_bytes: bytes, options: OptionsLike, result: PipelineResult) -> bool:
        """
        Store a result.

        Returns:
            False if the cache is disabled or the entry alone exceeds max_bytes
        """
        if not self.enabled:
            return False

        payload = json.dumps(result.to_cache_dict(), separators=(",", ":"), ensure_ascii=False)
        size = len(payload.encode("utf-8"))
        if size > self.max_bytes:
            logger.warning(f"Result too large to cache ({size} bytes > {self.max_bytes})")
            return False

        key = make_cache_key(image_bytes, options)
        now = self._clock()
        with self._lock:
            if key in self._entries:
                self._remove(key)
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                size_bytes=size,
                created_at=now,
                last_accessed=now,
            )
            self._total_bytes += size
            self._stats["stores"] += 1

            if len(self._entries) > self.max_entries or self._total_bytes > self.max_bytes:
                self._evict(protect=key)

        logger.debug(f"Cached result {key[:16]}... ({size} bytes)")
        return True

    def _evict(self, protect: str) -> None:
        """Drop least-recently-accessed entries until both caps are at 80%"""
        target_entries = math.floor(self.max_entries * EVICTION_TARGET)
        target_bytes = self.max_bytes * EVICTION_TARGET
        evicted = 0

        for key in list(self._entries):
            if len(self._entries) <= target_entries and self._total_bytes <= target_bytes:
                break
            if key == protect:
                continue
            self._remove(key)
            evicted += 1

        self._stats["evictions"] += evicted
        logger.info(
            f"Cache eviction removed {evicted} entries "
            f"({len(self._entries)} entries, {self._total_bytes} bytes remain)"
        )

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._total_bytes -= entry.size_bytes

    def cleanup_expired(self) -> int:
        """Remove every expired entry; returns how many were removed"""
        with self._lock:
            now = self._clock()
            expired = [
                key for key, entry in self._entries.items()
                if now - entry.created_at > self.max_age_seconds
            ]
            for key in expired:
                self._remove(key)
            self._stats["expired"] += len(expired)
            self._purge_seen_images(now)

        if expired:
            logger.info(f"Removed {len(expired)} expired cache entries")
        return len(expired)

    def check_duplicate(self, image_bytes: bytes) -> DuplicateCheck:
        """
        Whether these exact bytes were recorded recently.

        Purely a signal; it never substitutes a result computed under
        different options.
        """
        digest = image_hash(image_bytes)
        with self._lock:
            self._purge_seen_images(self._clock())
            seen = self._seen_images.get(digest)
            if seen is None:
                return DuplicateCheck(is_duplicate=False)
            return DuplicateCheck(
                is_duplicate=True,
                times_seen=seen["times_seen"],
                first_seen=seen["first_seen"],
                cache_key=seen["cache_key"],
            )

    def record_image(self, image_bytes: bytes, cache_key: Optional[str] = None) -> None:
        """Add an image to the duplicate index"""
        digest = image_hash(image_bytes)
        now = self._clock()
        with self._lock:
            seen = self._seen_images.get(digest)
            if seen is None:
                seen = {"first_seen": now, "times_seen": 0, "cache_key": None}
                self._seen_images[digest] = seen
            seen["times_seen"] += 1
            seen["last_seen"] = now
            if cache_key is not None:
                seen["cache_key"] = cache_key
            self._seen_images.move_to_end(digest)

            while len(self._seen_images) > self.duplicate_index_max_entries:
                self._seen_images.popitem(last=False)

    def _purge_seen_images(self, now: float) -> None:
        stale = [
            digest for digest, seen in self._seen_images.items()
            if now - seen["last_seen"] > self.duplicate_index_ttl_seconds
        ]
        for digest in stale:
            del self._seen_images[digest]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                "enabled": self.enabled,
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "stores": self._stats["stores"],
                "evictions": self._stats["evictions"],
                "expired": self._stats["expired"],
                "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
                "entries": len(self._entries),
                "total_bytes": self._total_bytes,
                "max_entries": self.max_entries,
                "max_bytes": self.max_bytes,
                "seen_images": len(self._seen_images),
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._seen_images.clear()
            self._total_bytes = 0
        logger.info("Result cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
