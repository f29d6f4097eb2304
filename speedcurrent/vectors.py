"""
Planar vector primitives.

Velocities are handled in Cartesian form (x, y) in SI units. Angles are
radians. Rotation follows the marine convention used throughout the package:
rotating by ``angle`` expresses a vector in the frame whose x-axis points
along ``angle`` (e.g. rotating a ground-frame vector by heading gives its
boat-frame components).

Usage:
    from speedcurrent.vectors import Vector2, rotate

    sog = Vector2.from_polar(3.2, math.radians(45))
    in_boat_frame = rotate(sog, heading)
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

KNOTS_PER_MS = 1.94384


@dataclass(frozen=True)
class Vector2:
    """Immutable 2D vector."""
    x: float = 0.0
    y: float = 0.0

    @classmethod
    def from_polar(cls, magnitude: float, angle: float) -> "Vector2":
        return cls(magnitude * math.cos(angle), magnitude * math.sin(angle))

    @classmethod
    def from_array(cls, values) -> "Vector2":
        arr = np.asarray(values, dtype=float).reshape(2)
        return cls(float(arr[0]), float(arr[1]))

    @property
    def magnitude(self) -> float:
        return math.hypot(self.x, self.y)

    @property
    def angle(self) -> float:
        return math.atan2(self.y, self.x)

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=float)

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)

    def __add__(self, other: "Vector2") -> "Vector2":
        return Vector2(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Vector2") -> "Vector2":
        return Vector2(self.x - other.x, self.y - other.y)

    def __neg__(self) -> "Vector2":
        return Vector2(-self.x, -self.y)


def to_vector(magnitude: float, angle: float) -> Vector2:
    """Convert magnitude/angle to Cartesian form."""
    return Vector2.from_polar(magnitude, angle)


def to_polar(vector: Vector2) -> Tuple[float, float]:
    """Convert a vector to (magnitude, angle)."""
    return vector.magnitude, vector.angle


def rotate(vector: Vector2, angle: float) -> Vector2:
    """
    Rotate ``vector`` into the frame defined by ``angle``.

    Applies the rotation matrix for -angle:
        x' =  cos(a) * x + sin(a) * y
        y' = -sin(a) * x + cos(a) * y
    """
    c = math.cos(angle)
    s = math.sin(angle)
    return Vector2(c * vector.x + s * vector.y, -s * vector.x + c * vector.y)


def rotate_variance(variance: Tuple[float, float], angle: float) -> np.ndarray:
    """
    Rotate a diagonal variance pair by ``angle``.

    The off-diagonal term is (var_x - var_y) * cos * sin, which equals
    R.T @ diag(variance) @ R for the matrix R used by :func:`rotate`.

    Args:
        variance: (var_x, var_y) in the source frame
        angle: Rotation angle (radians)

    Returns:
        Full 2x2 covariance in the rotated frame
    """
    vx, vy = variance
    c = math.cos(angle)
    s = math.sin(angle)
    cxy = (vx - vy) * c * s
    return np.array([
        [vx * c ** 2 + vy * s ** 2, cxy],
        [cxy, vx * s ** 2 + vy * c ** 2],
    ])


def wrap_angle(angle: float, period: float = 2 * math.pi) -> float:
    """Wrap an angle into [0, period)."""
    wrapped = math.fmod(angle, period)
    if wrapped < 0:
        wrapped += period
    # fmod of a tiny negative number can round up to period
    if wrapped >= period:
        wrapped -= period
    return wrapped


def angle_difference(a: float, b: float, period: float = 2 * math.pi) -> float:
    """Signed shortest difference a - b, in [-period/2, period/2)."""
    return wrap_angle(a - b + period / 2, period) - period / 2


def knots_to_ms(knots: float) -> float:
    return knots / KNOTS_PER_MS


def ms_to_knots(ms: float) -> float:
    return ms * KNOTS_PER_MS
