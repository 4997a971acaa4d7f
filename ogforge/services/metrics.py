"""
Generation metrics for the OG image service.
"""
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass


@dataclass
class GenerationMetrics:
    total_generations: int = 0
    total_time_ms: float = 0.0
    average_time_ms: float = 0.0
    min_time_ms: float = 0.0
    max_time_ms: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_hit_rate: float = 0.0
    coalesced_waits: int = 0
    webp_fallbacks: int = 0
    errors: int = 0

    def to_dict(self):
        return asdict(self)


class MetricsCollector:
    """Thread-safe counters; renders are recorded from worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._generations = 0
            self._total_time = 0.0
            self._min_time = None
            self._max_time = 0.0
            self._hits = 0
            self._misses = 0
            self._waits = 0
            self._webp_fallbacks = 0
            self._errors = 0

    def record_generation(self, seconds: float) -> None:
        with self._lock:
            self._generations += 1
            self._total_time += seconds
            self._min_time = seconds if self._min_time is None else min(self._min_time, seconds)
            self._max_time = max(self._max_time, seconds)

    @contextmanager
    def time_generation(self):
        """Times the block; failed generations are not recorded."""
        start = time.perf_counter()
        yield
        self.record_generation(time.perf_counter() - start)

    def record_cache_hit(self) -> None:
        with self._lock:
            self._hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._misses += 1

    def record_coalesced_wait(self) -> None:
        with self._lock:
            self._waits += 1

    def record_webp_fallback(self) -> None:
        with self._lock:
            self._webp_fallbacks += 1

    def record_error(self) -> None:
        with self._lock:
            self._errors += 1

    def snapshot(self) -> GenerationMetrics:
        with self._lock:
            lookups = self._hits + self._misses
            return GenerationMetrics(
                total_generations=self._generations,
                total_time_ms=self._total_time * 1000,
                average_time_ms=(self._total_time / self._generations * 1000) if self._generations else 0.0,
                min_time_ms=(self._min_time or 0.0) * 1000,
                max_time_ms=self._max_time * 1000,
                cache_hits=self._hits,
                cache_misses=self._misses,
                cache_hit_rate=(self._hits / lookups) if lookups else 0.0,
                coalesced_waits=self._waits,
                webp_fallbacks=self._webp_fallbacks,
                errors=self._errors,
            )
