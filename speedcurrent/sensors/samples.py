"""
Timestamped sensor samples and a last-known-value cache.

The host bus delivers ``SensorSample`` objects. The pipeline does no time
synchronization: each cycle simply reads the most recent value of every
input path.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Input paths
HEADING = "navigation.headingTrue"
ATTITUDE = "navigation.attitude"
BOAT_SPEED = "navigation.speedThroughWater"
SPEED_OVER_GROUND = "navigation.speedOverGround"
COURSE_OVER_GROUND = "navigation.courseOverGroundTrue"
MAGNETIC_VARIATION = "navigation.magneticVariation"

# Output paths
LEEWAY = "navigation.leewayAngle"
CURRENT = "environment.current"

INPUT_PATHS = (
    HEADING,
    ATTITUDE,
    BOAT_SPEED,
    SPEED_OVER_GROUND,
    COURSE_OVER_GROUND,
    MAGNETIC_VARIATION,
)


@dataclass(frozen=True)
class Attitude:
    """Vessel attitude in radians (roll positive to starboard)."""
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0

    @classmethod
    def from_value(cls, value: Any) -> "Attitude":
        if isinstance(value, Attitude):
            return value
        if isinstance(value, dict):
            return cls(
                roll=float(value.get("roll", 0.0)),
                pitch=float(value.get("pitch", 0.0)),
                yaw=float(value.get("yaw", 0.0)),
            )
        raise TypeError(f"Cannot build Attitude from {type(value).__name__}")


@dataclass(frozen=True)
class SensorSample:
    """One value delivered by the host bus."""
    path: str
    value: Any
    timestamp: datetime
    source: str = ""


class LatestValues:
    """
    Last-known value per input path.

    Samples published by ``own_source`` are dropped so the pipeline never
    consumes its own output (corrected boat speed shares a path with the
    raw sensor).
    """

    def __init__(self, own_source: str = ""):
        self.own_source = own_source
        self._values: Dict[str, Any] = {}
        self._timestamps: Dict[str, datetime] = {}
        # Attitude defaults to level so boats without an attitude sensor still run
        self._values[ATTITUDE] = Attitude()

    def accept(self, sample: SensorSample) -> bool:
        """Store ``sample``. Returns False if it was ignored."""
        if self.own_source and sample.source == self.own_source:
            return False
        if sample.path not in INPUT_PATHS:
            logger.debug(f"Ignoring sample for unhandled path {sample.path}")
            return False

        value = sample.value
        if sample.path == ATTITUDE:
            try:
                value = Attitude.from_value(value)
            except (TypeError, ValueError) as e:
                logger.debug(f"Dropping malformed attitude sample: {e}")
                return False

        self._values[sample.path] = value
        self._timestamps[sample.path] = sample.timestamp
        return True

    def get(self, path: str, default: Any = None) -> Any:
        return self._values.get(path, default)

    def get_float(self, path: str) -> float:
        """Latest value as float, NaN if missing or not numeric."""
        value = self._values.get(path)
        try:
            return float(value)
        except (TypeError, ValueError):
            return math.nan

    @property
    def attitude(self) -> Attitude:
        return self._values[ATTITUDE]

    def timestamp(self, path: str) -> Optional[datetime]:
        return self._timestamps.get(path)

    def clear(self):
        self._values.clear()
        self._timestamps.clear()
        self._values[ATTITUDE] = Attitude()
