"""
Grid resampling.

Migrates a learned correction grid onto a new geometry, e.g. after the
speed/heel steps or limits are reconfigured. Every new cell is seeded from
the old grid's inverse-distance blend at the new cell center. Seeding is
conservative: a seeded cell only counts as learned when the old grid
genuinely covered that point, so a finer or wider grid does not inherit
false confidence.
"""

import logging
from typing import Optional

import numpy as np

from ..filters.kalman import KalmanState2D
from ..metrics import timed
from .correction_grid import CorrectionGrid
from .table import GridAxis

logger = logging.getLogger(__name__)

# Default floor for seeded per-axis variance (m/s)^2
DEFAULT_VARIANCE_FLOOR = 1e-4

# Learned bracketing cells needed before a seed is trusted
MIN_COVERING_NEIGHBOURS = 2

# Inverse-distance weighted update count needed before a seed is trusted
MIN_EFFECTIVE_SAMPLES = 1.0


@timed("grid_resample")
def resample(
    old_grid: CorrectionGrid,
    row_axis: GridAxis,
    col_axis: GridAxis,
    variance_floor: float = DEFAULT_VARIANCE_FLOOR,
    process_noise: Optional[float] = None,
) -> CorrectionGrid:
    """
    Build a new grid over (row_axis, col_axis) seeded from ``old_grid``.

    Args:
        old_grid: Grid to migrate from (not modified)
        row_axis: New speed axis
        col_axis: New heel axis
        variance_floor: Lower bound for each seeded variance component
        process_noise: Process noise of the new grid (defaults to the old one)

    Returns:
        New CorrectionGrid. Cells without any learned old neighbour stay
        unlearned; seeded cells get index 1 when the old grid covered the
        point (inside its bounds, enough learned neighbours, enough effective
        samples) and index 0 otherwise.
    """
    if variance_floor < 0:
        raise ValueError(f"variance_floor must be non-negative, got {variance_floor}")

    new_grid = CorrectionGrid(
        row_axis,
        col_axis,
        process_noise=old_grid.process_noise if process_noise is None else process_noise,
    )

    seeded = trusted = 0
    rows, cols = new_grid.shape
    for row in range(rows):
        for col in range(cols):
            speed = row_axis.center(row)
            heel = col_axis.center(col)
            estimate = old_grid.get_correction_with_variance(speed, heel)
            if estimate.learned_neighbours == 0:
                continue

            variance = (
                max(estimate.variance_x, variance_floor),
                max(estimate.variance_y, variance_floor),
            )
            covered = (
                old_grid.row_axis.contains(speed)
                and old_grid.col_axis.contains(heel)
                and estimate.learned_neighbours >= min(MIN_COVERING_NEIGHBOURS, estimate.neighbour_count)
                and estimate.effective_samples >= MIN_EFFECTIVE_SAMPLES
            )
            index = 1 if covered else 0

            new_grid.set_state(row, col, KalmanState2D(
                mean=np.array([estimate.x, estimate.y]),
                covariance=np.diag(variance),
                index=index,
            ))
            seeded += 1
            trusted += index

    logger.info(
        f"Resampled correction grid {old_grid.shape} -> {new_grid.shape}: "
        f"{seeded} cells seeded, {trusted} trusted"
    )
    return new_grid
