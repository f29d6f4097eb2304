"""
Leaky min/max tracker used to decide when conditions are steady.

The tracked bounds follow the signal with two time constants: ``catchup_tau``
when an observation pushes a bound outward, ``tau`` when the bound relaxes
back toward the signal. A small ``range`` therefore means the signal has
stayed put for a few ``tau``.

For angular signals the bounds live in [0, period) and are moved along the
shortest arc, so a heading oscillating around north is handled correctly.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from ..vectors import angle_difference, wrap_angle

logger = logging.getLogger(__name__)


class StabilityGate:
    """
    Decayed running extremes of a scalar or angle.

    Usage:
        gate = StabilityGate(tau=2.0, catchup_tau=0.5, is_angle=True)
        gate.update(heading, timestamp)
        if gate.is_stable(math.radians(5)):
            ...
    """

    def __init__(
        self,
        tau: float = 2.0,
        catchup_tau: float = 0.5,
        is_angle: bool = False,
        period: float = 2 * math.pi,
        initial_min: Optional[float] = None,
        initial_max: Optional[float] = None,
        started_at: Optional[datetime] = None,
    ):
        """
        Args:
            tau: Time constant (s) for bounds relaxing toward the signal
            catchup_tau: Time constant (s) for bounds expanding outward
            is_angle: Treat the signal as an angle wrapping at ``period``
            period: Wrap period for angular signals
            initial_min: Starting lower bound (seeded from the first observation if None)
            initial_max: Starting upper bound
            started_at: Time the initial bounds refer to
        """
        if tau <= 0 or catchup_tau <= 0:
            raise ValueError("Time constants must be positive")
        self.tau = tau
        self.catchup_tau = catchup_tau
        self.is_angle = is_angle
        self.period = period

        self.min: Optional[float] = None
        self.max: Optional[float] = None
        if initial_min is not None and initial_max is not None:
            self.min = wrap_angle(initial_min, period) if is_angle else initial_min
            self.max = wrap_angle(initial_max, period) if is_angle else initial_max
        self.last_update: Optional[datetime] = started_at
        self._first_update: Optional[datetime] = started_at

    def _alpha(self, dt: float, outward: bool) -> float:
        tau = self.catchup_tau if outward else self.tau
        return 1.0 - math.exp(-dt / tau)

    def update(self, observation: float, timestamp: datetime) -> None:
        """Move the bounds toward ``observation``."""
        if observation is None or not math.isfinite(observation):
            return

        if self.min is None:
            value = wrap_angle(observation, self.period) if self.is_angle else observation
            self.min = value
            self.max = value
            self.last_update = timestamp
            self._first_update = timestamp
            return

        if self.last_update is None:
            self.last_update = timestamp
            self._first_update = timestamp
            return

        dt = (timestamp - self.last_update).total_seconds()
        if dt <= 0:
            return
        self.last_update = timestamp

        if not self.is_angle:
            self.min += (observation - self.min) * self._alpha(dt, observation < self.min)
            self.max += (observation - self.max) * self._alpha(dt, observation > self.max)
            return

        observation = wrap_angle(observation, self.period)
        min_diff = angle_difference(observation, self.min, self.period)
        max_diff = angle_difference(observation, self.max, self.period)
        self.min = wrap_angle(self.min + min_diff * self._alpha(dt, min_diff < 0), self.period)
        self.max = wrap_angle(self.max + max_diff * self._alpha(dt, max_diff > 0), self.period)

    @property
    def range(self) -> float:
        """Spread between the bounds (shortest arc for angles)."""
        if self.min is None:
            return 0.0
        if not self.is_angle:
            return self.max - self.min
        return abs(angle_difference(self.max, self.min, self.period))

    @property
    def observed_seconds(self) -> float:
        """Time spanned by the observations seen so far."""
        if self._first_update is None or self.last_update is None:
            return 0.0
        return (self.last_update - self._first_update).total_seconds()

    def is_stable(self, threshold: float) -> bool:
        """
        True when the range is below ``threshold``.

        A gate that has not yet watched the signal for one ``tau`` is never
        stable: a single observation has zero range but proves nothing.
        """
        if self.observed_seconds < self.tau:
            return False
        return self.range < threshold

    def reset(self):
        self.min = None
        self.max = None
        self.last_update = None
        self._first_update = None
