"""Sensor samples, signal statistics and simulation."""

from .samples import Attitude, LatestValues, SensorSample
from .polar_stats import PolarSample, PolarStatistics
from .simulator import BoatSimulator, SimulatedConditions

__all__ = [
    "Attitude",
    "LatestValues",
    "SensorSample",
    "PolarSample",
    "PolarStatistics",
    "BoatSimulator",
    "SimulatedConditions",
]
