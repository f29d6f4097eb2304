"""
Synthetic sailing data.

Generates the sample stream a boat would produce with a known speed-sensor
bias, a known leeway law and a known current, so the estimator can be
checked against ground truth.

The true motion through water in the boat frame is
    (s * cos(leeway), s * sin(leeway)),   leeway = leeway_per_heel * heel
and the speed sensor reports (1 - speed_bias) times its forward component.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

import numpy as np

from ..vectors import Vector2, rotate
from .samples import (
    ATTITUDE,
    BOAT_SPEED,
    COURSE_OVER_GROUND,
    HEADING,
    MAGNETIC_VARIATION,
    SPEED_OVER_GROUND,
    SensorSample,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulatedConditions:
    """True state of the boat for one step."""
    speed: float = 3.0          # m/s through water
    heading: float = 0.0        # rad
    heel: float = 0.0           # rad
    current: Vector2 = Vector2()  # ground frame, m/s


class BoatSimulator:
    """
    Emits SensorSamples for given conditions.

    Usage:
        sim = BoatSimulator(speed_bias=0.05, leeway_per_heel=0.1, seed=1)
        for sample in sim.run(SimulatedConditions(speed=3.0, heel=0.2), seconds=60):
            pipeline.on_sample(sample)
    """

    def __init__(
        self,
        speed_bias: float = 0.05,
        leeway_per_heel: float = 0.1,
        speed_noise: float = 0.02,
        angle_noise: float = 0.005,
        sample_rate: float = 1.0,
        magnetic_variation: Optional[float] = None,
        start: Optional[datetime] = None,
        seed: int = 0,
        source: str = "simulator",
    ):
        """
        Args:
            speed_bias: Fraction by which the speed sensor under-reads
            leeway_per_heel: Leeway angle per radian of heel
            speed_noise: Std of speed noise (m/s)
            angle_noise: Std of heading/course/heel noise (rad)
            sample_rate: Steps per second
            magnetic_variation: Emitted with every step when set (rad)
            start: Timestamp of the first step
            seed: Seed for the noise generator
            source: Source id put on every sample
        """
        self.speed_bias = speed_bias
        self.leeway_per_heel = leeway_per_heel
        self.speed_noise = speed_noise
        self.angle_noise = angle_noise
        self.sample_rate = sample_rate
        self.magnetic_variation = magnetic_variation
        self.source = source
        self.time = start or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        self._rng = np.random.default_rng(seed)

    def leeway(self, heel: float) -> float:
        return self.leeway_per_heel * heel

    def water_velocity(self, speed: float, heel: float) -> Vector2:
        """True boat-frame velocity through water."""
        return Vector2.from_polar(speed, self.leeway(heel))

    def observed_speed(self, speed: float, heel: float) -> float:
        """Noise-free speed sensor reading."""
        return (1.0 - self.speed_bias) * self.water_velocity(speed, heel).x

    def true_correction(self, speed: float, heel: float) -> Vector2:
        """Boat-frame correction the grid should learn at the sensor's reading."""
        return self.water_velocity(speed, heel) - Vector2(self.observed_speed(speed, heel), 0.0)

    def ground_velocity(self, conditions: SimulatedConditions) -> Vector2:
        through_water = rotate(self.water_velocity(conditions.speed, conditions.heel), -conditions.heading)
        return through_water + conditions.current

    def _noise(self, std: float) -> float:
        return float(self._rng.normal(0.0, std)) if std > 0 else 0.0

    def step(self, conditions: SimulatedConditions) -> List[SensorSample]:
        """
        Samples for one instant, boat speed last.

        The clock advances by 1 / sample_rate after the step.
        """
        ts = self.time
        ground = self.ground_velocity(conditions)

        heading = conditions.heading + self._noise(self.angle_noise)
        heel = conditions.heel + self._noise(self.angle_noise)
        sog = max(0.0, ground.magnitude + self._noise(self.speed_noise))
        cog = ground.angle + self._noise(self.angle_noise)
        stw = max(0.0, self.observed_speed(conditions.speed, conditions.heel) + self._noise(self.speed_noise))

        samples = [
            SensorSample(HEADING, heading % (2 * math.pi), ts, self.source),
            SensorSample(ATTITUDE, {"roll": heel, "pitch": 0.0, "yaw": heading}, ts, self.source),
            SensorSample(SPEED_OVER_GROUND, sog, ts, self.source),
            SensorSample(COURSE_OVER_GROUND, cog % (2 * math.pi), ts, self.source),
        ]
        if self.magnetic_variation is not None:
            samples.append(SensorSample(MAGNETIC_VARIATION, self.magnetic_variation, ts, self.source))
        samples.append(SensorSample(BOAT_SPEED, stw, ts, self.source))

        self.time = ts + timedelta(seconds=1.0 / self.sample_rate)
        return samples

    def run(self, conditions: SimulatedConditions, seconds: float) -> Iterator[SensorSample]:
        """Samples for ``seconds`` of steady conditions."""
        steps = int(round(seconds * self.sample_rate))
        for _ in range(steps):
            yield from self.step(conditions)
