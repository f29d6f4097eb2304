"""
Unit tests for grid resampling.

Tests seeding from the old grid, the variance floor and the conservative
coverage rule that decides whether a seeded cell counts as learned.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from speedcurrent.calibration.correction_grid import CorrectionGrid
from speedcurrent.calibration.persistence import dump_grid
from speedcurrent.calibration.resampler import DEFAULT_VARIANCE_FLOOR, resample
from speedcurrent.calibration.table import GridAxis
from speedcurrent.filters.kalman import KalmanState2D
from speedcurrent.metrics import metrics

ROWS = GridAxis(0.0, 10.0, 1.0)
COLS = GridAxis(-30.0, 30.0, 10.0)


def state(x, y, variance=0.01, index=3):
    return KalmanState2D(np.array([x, y]), variance * np.eye(2), index)


@pytest.fixture
def old_grid():
    grid = CorrectionGrid(ROWS, COLS)
    grid.set_state(5, 3, state(0.2, 0.05))
    grid.set_state(6, 3, state(0.4, 0.10))
    grid.set_state(10, 3, state(0.6, 0.20))
    return grid


class TestIdenticalGeometry:
    def test_means_reproduced(self, old_grid):
        """Test each learned cell keeps its mean on the same geometry."""
        new_grid = resample(old_grid, ROWS, COLS)

        for (row, col), old in old_grid.states():
            new = new_grid.state_at(row, col)
            if old is None:
                assert new is None
                continue
            np.testing.assert_allclose(new.mean, old.mean, atol=DEFAULT_VARIANCE_FLOOR)
            assert new.index == 1

    def test_variance_kept_above_floor(self, old_grid):
        new_grid = resample(old_grid, ROWS, COLS)
        np.testing.assert_allclose(new_grid.state_at(5, 3).covariance, 0.01 * np.eye(2))

    def test_process_noise_inherited(self, old_grid):
        assert resample(old_grid, ROWS, COLS).process_noise == old_grid.process_noise
        assert resample(old_grid, ROWS, COLS, process_noise=1e-5).process_noise == 1e-5


class TestCoverage:
    """Unit tests for the learned/unlearned decision on seeded cells."""

    def test_point_without_coverage(self, old_grid):
        """Test a new point with no learned old neighbour stays unlearned."""
        new_grid = resample(old_grid, GridAxis(0.0, 20.0, 1.0), COLS)

        assert new_grid.cell_index(15.0, 20.0) == 0
        assert new_grid.state_at(15, 5) is None

    def test_outside_old_bounds_seeded_but_untrusted(self, old_grid):
        """Test a point beyond the old axis inherits the edge value with index 0."""
        new_grid = resample(old_grid, GridAxis(0.0, 20.0, 1.0), COLS)
        seeded = new_grid.state_at(15, 3)

        assert seeded is not None
        assert seeded.index == 0
        assert seeded.x == pytest.approx(0.6)
        assert new_grid.cell_index(15.0, 0.0) == 0

    def test_between_two_learned_cells_trusted(self, old_grid):
        new_grid = resample(old_grid, GridAxis(0.0, 10.0, 0.5), COLS)
        seeded = new_grid.state_at(11, 3)  # speed 5.5

        assert seeded.index == 1
        assert seeded.x == pytest.approx(0.3)

    def test_half_covered_point_untrusted(self, old_grid):
        """Test one learned neighbour out of two is not enough."""
        new_grid = resample(old_grid, GridAxis(0.0, 10.0, 0.5), COLS)
        seeded = new_grid.state_at(13, 3)  # speed 6.5, only 6 learned

        assert seeded.index == 0
        assert seeded.x == pytest.approx(0.4)

    def test_exact_old_center_trusted(self, old_grid):
        """Test a point on an old center needs only that one cell."""
        new_grid = resample(old_grid, GridAxis(0.0, 10.0, 0.5), COLS)
        assert new_grid.state_at(20, 3).index == 1  # speed 10

    def test_low_effective_samples_untrusted(self):
        """Test unlearned neighbours dilute coverage below one sample."""
        grid = CorrectionGrid(ROWS, COLS)
        grid.set_state(5, 3, state(0.2, 0.0, index=1))
        grid.set_state(5, 4, state(0.2, 0.0, index=1))

        new_grid = resample(grid, GridAxis(0.0, 10.0, 0.5), GridAxis(-30.0, 30.0, 5.0))
        seeded = new_grid.state_at(11, 7)  # speed 5.5, heel 5: 2 of 4 learned

        assert seeded is not None
        assert seeded.index == 0

    def test_finer_grid_learned_fraction(self, old_grid):
        new_grid = resample(old_grid, GridAxis(0.0, 10.0, 0.5), COLS)
        assert new_grid.learned_cells < sum(1 for _, s in new_grid.states() if s is not None)


class TestVarianceFloor:
    def test_floor_applied(self):
        grid = CorrectionGrid(ROWS, COLS)
        grid.set_state(5, 3, state(0.2, 0.0, variance=1e-8))

        new_grid = resample(grid, ROWS, COLS, variance_floor=1e-3)
        np.testing.assert_allclose(np.diag(new_grid.state_at(5, 3).covariance), [1e-3, 1e-3])

    def test_spread_raises_variance(self, old_grid):
        new_grid = resample(old_grid, GridAxis(0.0, 10.0, 0.5), COLS)
        seeded = new_grid.state_at(11, 3)

        assert seeded.covariance[0, 0] == pytest.approx(0.01 + 0.01)

    def test_negative_floor_rejected(self, old_grid):
        with pytest.raises(ValueError):
            resample(old_grid, ROWS, COLS, variance_floor=-1.0)


class TestSideEffects:
    def test_old_grid_unchanged(self, old_grid):
        before = dump_grid(old_grid)
        resample(old_grid, GridAxis(0.0, 10.0, 0.5), GridAxis(-30.0, 30.0, 5.0))

        assert dump_grid(old_grid) == before

    def test_new_grid_independent(self, old_grid):
        new_grid = resample(old_grid, ROWS, COLS)
        new_grid.update_cell(5.0, 0.0, np.array([9.0, 9.0]), np.eye(2))

        assert old_grid.cell(5.0, 0.0).x == pytest.approx(0.2)

    def test_timed(self, old_grid):
        resample(old_grid, ROWS, COLS)
        assert metrics.get_timing("grid_resample").count == 1
