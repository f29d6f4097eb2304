"""
Runtime metrics for the estimation engine.

Collects counters, gauges and timings for the fusion cycle so a host can
report throughput and spot slow cycles. The collector is process-wide and
thread-safe.

Usage:
    from speedcurrent.metrics import metrics, timed

    with metrics.timer("fusion_cycle"):
        pipeline.run_cycle(now)

    metrics.increment("grid_updates_applied")
    summary = metrics.get_summary()
"""

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import wraps
from threading import Lock
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class TimingStats:
    """Running statistics of one timed operation."""
    name: str
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    recent_ms: deque = field(default_factory=lambda: deque(maxlen=50))

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def record(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        self.recent_ms.append(duration_ms)

    def to_dict(self) -> dict:
        recent = sum(self.recent_ms) / len(self.recent_ms) if self.recent_ms else 0.0
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "recent_avg_ms": round(recent, 3),
        }


class EngineMetrics:
    """
    Counters, gauges and timings.

    A fusion cycle does no I/O, so anything above ``SLOW_THRESHOLD_MS``
    points at a problem and is logged.
    """

    SLOW_THRESHOLD_MS = 50.0

    def __init__(self):
        self._timings: Dict[str, TimingStats] = {}
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._lock = Lock()
        self._started = time.monotonic()

    @contextmanager
    def timer(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            with self._lock:
                stats = self._timings.setdefault(name, TimingStats(name=name))
                stats.record(elapsed_ms)
            if elapsed_ms > self.SLOW_THRESHOLD_MS:
                logger.warning(f"Slow operation: {name} took {elapsed_ms:.1f}ms")

    def increment(self, name: str, amount: int = 1):
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def set_gauge(self, name: str, value: float):
        with self._lock:
            self._gauges[name] = value

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def get_timing(self, name: str) -> Optional[TimingStats]:
        with self._lock:
            return self._timings.get(name)

    def get_summary(self) -> dict:
        with self._lock:
            uptime = time.monotonic() - self._started
            cycles = self._counters.get("fusion_cycles_processed", 0)
            return {
                "uptime_seconds": round(uptime, 1),
                "cycles_per_sec": round(cycles / uptime, 2) if uptime > 0 else 0.0,
                "timings": {name: stats.to_dict() for name, stats in self._timings.items()},
                "counters": dict(self._counters),
                "gauges": {k: round(v, 6) for k, v in self._gauges.items()},
            }

    def reset(self):
        with self._lock:
            self._timings.clear()
            self._counters.clear()
            self._gauges.clear()
            self._started = time.monotonic()


metrics = EngineMetrics()


def timed(name: str):
    """Decorator timing every call of the wrapped function."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(name):
                return func(*args, **kwargs)
        return wrapper
    return decorator
