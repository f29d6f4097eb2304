"""
Windowed statistics of a vector signal.

A ``PolarSample`` is what the correction grid consumes: the latest
observation of a signal together with the spread of its recent history.
Streams with fewer than two samples carry no variance information and are
not used as observations.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..vectors import Vector2

logger = logging.getLogger(__name__)

# Fewer samples than this give no variance estimate
MIN_SAMPLE_COUNT = 2


@dataclass(frozen=True)
class PolarSample:
    """Latest value of a vector signal plus its recent per-axis variance."""
    magnitude: float
    angle: float
    variance: Tuple[float, float]
    sample_count: int

    @property
    def vector(self) -> Vector2:
        return Vector2.from_polar(self.magnitude, self.angle)

    @property
    def is_usable(self) -> bool:
        return self.sample_count >= MIN_SAMPLE_COUNT


class PolarStatistics:
    """
    Ring buffer of recent Cartesian observations.

    Usage:
        stats = PolarStatistics(window=20)
        stats.sample(ground_speed_vector)
        snapshot = stats.snapshot()
    """

    def __init__(self, window: int = 20):
        if window < MIN_SAMPLE_COUNT:
            raise ValueError(f"window must be at least {MIN_SAMPLE_COUNT}, got {window}")
        self.window = window
        self._buffer: deque = deque(maxlen=window)

    def sample(self, vector: Vector2) -> None:
        """Add an observation. Non-finite vectors are dropped."""
        if not vector.is_finite():
            logger.debug(f"Dropping non-finite sample {vector}")
            return
        self._buffer.append((vector.x, vector.y))

    def snapshot(self) -> Optional[PolarSample]:
        """Current view of the signal, or None before the first sample."""
        if not self._buffer:
            return None

        latest = Vector2(*self._buffer[-1])
        n = len(self._buffer)
        if n >= MIN_SAMPLE_COUNT:
            arr = np.array(self._buffer)
            var_x, var_y = np.var(arr, axis=0, ddof=1)
            variance = (float(var_x), float(var_y))
        else:
            variance = (0.0, 0.0)

        return PolarSample(
            magnitude=latest.magnitude,
            angle=latest.angle,
            variance=variance,
            sample_count=n,
        )

    @property
    def sample_count(self) -> int:
        return len(self._buffer)

    def clear(self):
        self._buffer.clear()
