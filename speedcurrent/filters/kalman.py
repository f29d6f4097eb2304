"""
Two-state linear Kalman filter.

The model is deliberately narrow: identity transition, identity observation,
diagonal process noise Q = q*I, and an observation covariance R supplied with
every update. It serves two purposes:

1. Each cell of the correction grid is a KalmanState2D estimating the
   boat-frame speed error at that (speed, heel).
2. SmoothingFilter wraps the same update to smooth the corrected boat speed
   and the current vector, with R = I and q = 1 / stability.

States are values: ``kalman_update`` returns a new state and never mutates
the prior, so grid snapshots can share nothing with the live grid.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from ..vectors import Vector2

logger = logging.getLogger(__name__)

# Floor for |det(P + R)| before inverting
DETERMINANT_EPSILON = 1e-12

IDENTITY = np.eye(2)

ArrayLike = Union[Vector2, np.ndarray, list, tuple]


def _as_vector(value: ArrayLike) -> np.ndarray:
    if isinstance(value, Vector2):
        return value.to_array()
    return np.asarray(value, dtype=float).reshape(2)


def _as_covariance(value) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.shape == (2,):
        return np.diag(arr)
    return arr.reshape(2, 2)


@dataclass
class KalmanState2D:
    """
    Filter state: mean, covariance and update counter.

    ``index`` counts successful updates. It is used as a confidence/age proxy
    and is persisted with the grid.
    """
    mean: np.ndarray
    covariance: np.ndarray
    index: int = 0

    @property
    def x(self) -> float:
        return float(self.mean[0])

    @property
    def y(self) -> float:
        return float(self.mean[1])

    @property
    def trace(self) -> float:
        return float(self.covariance[0, 0] + self.covariance[1, 1])

    @property
    def vector(self) -> Vector2:
        return Vector2(self.x, self.y)

    def copy(self) -> "KalmanState2D":
        return KalmanState2D(self.mean.copy(), self.covariance.copy(), self.index)

    def to_dict(self) -> dict:
        """Column-vector mean and nested-list covariance, as persisted."""
        return {
            "mean": [[self.x], [self.y]],
            "covariance": self.covariance.tolist(),
            "index": self.index,
        }


def inverse_2x2(matrix: np.ndarray, epsilon: float = DETERMINANT_EPSILON) -> np.ndarray:
    """Invert a 2x2 matrix, regularizing a near-zero determinant."""
    a, b = matrix[0, 0], matrix[0, 1]
    c, d = matrix[1, 0], matrix[1, 1]
    det = a * d - b * c
    if abs(det) < epsilon:
        det = epsilon if det >= 0 else -epsilon
    return np.array([[d, -b], [-c, a]]) / det


def kalman_update(
    prior: Optional[KalmanState2D],
    observation: ArrayLike,
    observation_covariance,
    process_noise: float,
) -> KalmanState2D:
    """
    Run one predict/correct step.

    Args:
        prior: Previous state, or None for an unlearned filter
        observation: Observed 2-vector
        observation_covariance: R, either a 2x2 matrix or a diagonal pair
        process_noise: q, added to both diagonal terms on predict

    Returns:
        New state. A None prior is initialized to the observation with
        covariance R and index 1.
    """
    z = _as_vector(observation)
    r = _as_covariance(observation_covariance)

    if prior is None:
        return KalmanState2D(mean=z.copy(), covariance=r.copy(), index=1)

    # Predict: identity transition leaves the mean alone
    predicted = prior.covariance + process_noise * IDENTITY

    # Correct
    gain = predicted @ inverse_2x2(predicted + r)
    mean = prior.mean + gain @ (z - prior.mean)
    covariance = (IDENTITY - gain) @ predicted
    covariance = 0.5 * (covariance + covariance.T)

    return KalmanState2D(mean=mean, covariance=covariance, index=prior.index + 1)


def asymptotic_trace(process_noise: float, observation_noise: float = 1.0) -> float:
    """
    Covariance trace of a filter driven to convergence.

    With identity dynamics and R = r*I each axis settles at the fixed point
    p = (p + q) * r / (p + q + r), the positive root of p^2 + q*p - q*r = 0.
    The result is the smallest trace a cell can reach and is the reference
    for trace-based confidence weighting.
    """
    if process_noise <= 0 or observation_noise <= 0:
        raise ValueError(
            f"noise terms must be positive, got q={process_noise}, r={observation_noise}"
        )
    q = process_noise
    r = observation_noise
    # (-q + sqrt(q^2 + 4qr)) / 2 without the cancellation at small q
    per_axis = 2.0 * q * r / (q + math.sqrt(q * q + 4.0 * q * r))
    return 2.0 * per_axis


class SmoothingFilter:
    """
    Smoother for a vector signal built on :func:`kalman_update`.

    Larger ``stability`` means a smaller process-to-observation noise ratio,
    so the estimate changes more slowly and is trusted more.

    Usage:
        smoother = SmoothingFilter(stability=10 ** 5)
        estimate = smoother.update(instantaneous_current)
    """

    def __init__(self, stability: float):
        if stability <= 0:
            raise ValueError(f"stability must be positive, got {stability}")
        self.stability = stability
        self.process_noise = 1.0 / stability
        self._observation_covariance = IDENTITY.copy()
        self._state: Optional[KalmanState2D] = None

    def update(self, observation: Vector2) -> Vector2:
        """Feed an observation and return the smoothed estimate."""
        if not observation.is_finite():
            logger.debug(f"Ignoring non-finite observation {observation}")
            return self.estimate
        self._state = kalman_update(
            self._state,
            observation,
            self._observation_covariance,
            self.process_noise,
        )
        return self.estimate

    @property
    def estimate(self) -> Vector2:
        if self._state is None:
            return Vector2()
        return self._state.vector

    @property
    def state(self) -> Optional[KalmanState2D]:
        return None if self._state is None else self._state.copy()

    @property
    def index(self) -> int:
        return 0 if self._state is None else self._state.index

    def reset(self):
        self._state = None
