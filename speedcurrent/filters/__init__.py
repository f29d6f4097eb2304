"""Small estimation filters."""

from .kalman import KalmanState2D, SmoothingFilter, asymptotic_trace, kalman_update
from .stability import StabilityGate

__all__ = ["KalmanState2D", "SmoothingFilter", "asymptotic_trace", "kalman_update", "StabilityGate"]
