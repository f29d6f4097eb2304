"""
Speed/heel correction grid.

Each cell holds an independent two-state Kalman filter estimating the
boat-frame difference between the motion implied by ground speed and current
and the motion reported by the speed sensor. The x component captures speed
sensor bias, the y component captures leeway.

Rows are speed (m/s, from 0 to max speed), columns are heel (rad, symmetric
about zero). A cell is unlearned while its state is None.

Interpolation law:
    Queries blend the up-to-four bracketing cells with weight
        (1 / (distance + eps)) * (reference_trace / (trace + eps))
    where distance is measured in cell units and reference_trace is the
    converged trace of a filter with the grid's noise ratio. Only learned
    cells contribute.
"""

import copy
import logging
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np

from ..filters.kalman import KalmanState2D, asymptotic_trace, kalman_update
from ..sensors.polar_stats import PolarSample
from ..vectors import Vector2, rotate, rotate_variance
from .table import GridAxis, Neighbour, Table2D

logger = logging.getLogger(__name__)

WEIGHT_EPSILON = 1e-6


@dataclass(frozen=True)
class Correction:
    """Interpolated correction in the boat frame."""
    x: float = 0.0
    y: float = 0.0
    total_weight: float = 0.0

    @property
    def vector(self) -> Vector2:
        return Vector2(self.x, self.y)


@dataclass(frozen=True)
class CorrectionEstimate:
    """Inverse-distance blend of the neighbouring cells with its spread."""
    x: float = 0.0
    y: float = 0.0
    variance_x: float = 0.0
    variance_y: float = 0.0
    neighbour_count: int = 0
    learned_neighbours: int = 0
    effective_samples: float = 0.0


class CorrectionGrid:
    """
    Grid of per-cell Kalman filters indexed by (speed, heel).

    Usage:
        grid = CorrectionGrid(GridAxis.speed(4.6, 0.5), GridAxis.heel(0.56, 0.14))
        grid.update(speed, heel, ground_speed, current, boat_speed, heading)
        correction = grid.query(speed, heel)
    """

    def __init__(
        self,
        row_axis: GridAxis,
        col_axis: GridAxis,
        process_noise: float = 1e-7,
    ):
        """
        Args:
            row_axis: Speed axis (m/s)
            col_axis: Heel axis (rad)
            process_noise: Per-update drift q added to each cell's covariance
        """
        if process_noise <= 0:
            raise ValueError(f"process_noise must be positive, got {process_noise}")
        self.process_noise = process_noise
        self.reference_trace = asymptotic_trace(process_noise)
        self._table: Table2D[Optional[KalmanState2D]] = Table2D(row_axis, col_axis, lambda: None)

    @classmethod
    def from_stability(cls, row_axis: GridAxis, col_axis: GridAxis, stability: float) -> "CorrectionGrid":
        """Build a grid whose process noise is 10 ** -stability."""
        return cls(row_axis, col_axis, process_noise=10.0 ** (-stability))

    @property
    def row_axis(self) -> GridAxis:
        return self._table.row_axis

    @property
    def col_axis(self) -> GridAxis:
        return self._table.col_axis

    @property
    def shape(self) -> Tuple[int, int]:
        return self._table.shape

    def indices(self, speed: float, heel: float) -> Tuple[int, int]:
        """(row, col) of the cell nearest to (speed, heel), clamped."""
        return self._table.indices(speed, heel)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update(
        self,
        speed: float,
        heel: float,
        ground_speed: Optional[PolarSample],
        current: Optional[PolarSample],
        boat_speed: Optional[PolarSample],
        heading: float,
    ) -> bool:
        """
        Feed one observation into the cell at (speed, heel).

        Ground speed and current are ground-frame samples and are rotated into
        the boat frame by ``heading``; boat speed is already boat-frame.

        Returns:
            True if a cell was updated, False if the inputs were insufficient
        """
        samples = (ground_speed, current, boat_speed)
        if any(s is None or not s.is_usable for s in samples):
            return False
        if not all(math.isfinite(v) for v in (speed, heel, heading)):
            return False

        ground_vector = rotate(ground_speed.vector, heading)
        current_vector = rotate(current.vector, heading)
        boat_vector = boat_speed.vector

        observation = ground_vector - current_vector - boat_vector
        if not observation.is_finite():
            return False

        observation_covariance = (
            rotate_variance(ground_speed.variance, heading)
            + rotate_variance(current.variance, heading)
            + np.diag(boat_speed.variance)
        )
        self.update_cell(speed, heel, observation, observation_covariance)
        return True

    def update_cell(self, speed: float, heel: float, observation: Vector2, observation_covariance) -> KalmanState2D:
        """Run the Kalman update on the cell at (speed, heel)."""
        key = self.indices(speed, heel)
        state = kalman_update(self._table[key], observation, observation_covariance, self.process_noise)
        self._table[key] = state
        return state

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def cell(self, speed: float, heel: float) -> Optional[KalmanState2D]:
        """Copy of the state nearest to (speed, heel)."""
        state = self._table[self.indices(speed, heel)]
        return None if state is None else state.copy()

    def cell_index(self, speed: float, heel: float) -> int:
        """Update count of the cell nearest to (speed, heel)."""
        state = self._table[self.indices(speed, heel)]
        return 0 if state is None else state.index

    def state_at(self, row: int, col: int) -> Optional[KalmanState2D]:
        state = self._table[row, col]
        return None if state is None else state.copy()

    def set_state(self, row: int, col: int, state: Optional[KalmanState2D]):
        self._table[row, col] = None if state is None else state.copy()

    def neighbours(self, speed: float, heel: float) -> List[Neighbour[Optional[KalmanState2D]]]:
        return self._table.neighbours(speed, heel)

    def _trace_weighted(self, speed: float, heel: float) -> List[Tuple[Neighbour, float]]:
        """Learned neighbours with their unnormalized interpolation weights."""
        weighted = []
        for neighbour in self._table.neighbours(speed, heel):
            state = neighbour.cell
            if state is None or state.index <= 0:
                continue
            weight_distance = 1.0 / (neighbour.distance + WEIGHT_EPSILON)
            weight_trace = self.reference_trace / (state.trace + WEIGHT_EPSILON)
            weighted.append((neighbour, weight_distance * weight_trace))
        return weighted

    def query(self, speed: float, heel: float) -> Correction:
        """
        Interpolated correction at (speed, heel).

        The model is meaningless at zero speed, where a zero correction with
        zero weight is returned.
        """
        if speed == 0 or not (math.isfinite(speed) and math.isfinite(heel)):
            return Correction()

        x = y = total_weight = 0.0
        for neighbour, weight in self._trace_weighted(speed, heel):
            x += neighbour.cell.x * weight
            y += neighbour.cell.y * weight
            total_weight += weight

        if total_weight == 0:
            return Correction()
        return Correction(x / total_weight, y / total_weight, total_weight)

    def get_correction_with_variance(self, speed: float, heel: float) -> CorrectionEstimate:
        """
        Inverse-distance blend of the neighbours, with variance.

        The variance per axis is that of the weighted mixture of neighbour
        estimates: mean cell variance plus spread of the cell means.
        ``effective_samples`` is the inverse-distance weighted mean of the
        neighbours' update counts, with unlearned neighbours counting as zero.
        """
        neighbours = self._table.neighbours(speed, heel)
        weights = [1.0 / (n.distance + WEIGHT_EPSILON) for n in neighbours]
        learned = [
            (n.cell, w) for n, w in zip(neighbours, weights)
            if n.cell is not None and n.cell.index > 0
        ]
        if not learned:
            return CorrectionEstimate(neighbour_count=len(neighbours))

        learned_weight = sum(w for _, w in learned)
        means = np.array([s.mean for s, _ in learned])
        variances = np.array([np.diag(s.covariance) for s, _ in learned])
        w = np.array([w for _, w in learned]) / learned_weight

        mean = w @ means
        variance = w @ (variances + (means - mean) ** 2)
        effective = sum(s.index * wt for s, wt in learned) / sum(weights)

        return CorrectionEstimate(
            x=float(mean[0]),
            y=float(mean[1]),
            variance_x=float(variance[0]),
            variance_y=float(variance[1]),
            neighbour_count=len(neighbours),
            learned_neighbours=len(learned),
            effective_samples=float(effective),
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def states(self) -> Iterator[Tuple[Tuple[int, int], Optional[KalmanState2D]]]:
        """Iterate over ((row, col), state copy)."""
        for key, state in self._table.items():
            yield key, None if state is None else state.copy()

    @property
    def learned_cells(self) -> int:
        return sum(1 for _, s in self._table.items() if s is not None and s.index > 0)

    def copy(self) -> "CorrectionGrid":
        """Deep copy sharing no state with this grid."""
        return copy.deepcopy(self)

    def info(self) -> dict:
        """Per-cell estimates for read-only consumers."""
        return {
            "row": self.row_axis.to_dict(),
            "col": self.col_axis.to_dict(),
            "table": [
                [
                    {"x": 0.0, "y": 0.0, "N": 0} if s is None
                    else {"x": s.x, "y": s.y, "N": s.index}
                    for s in row
                ]
                for row in self._table.rows()
            ],
        }

    def __repr__(self) -> str:
        rows, cols = self.shape
        return f"CorrectionGrid({rows}x{cols}, learned={self.learned_cells})"
