"""
Unit tests for correction grid persistence.

Tests the persisted document layout, parsing, geometry checks and the
never-failing loader.
"""

import json
import logging
import sys
from pathlib import Path

import numpy as np
import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from speedcurrent.calibration.correction_grid import CorrectionGrid
from speedcurrent.calibration.persistence import (
    GeometryMismatchError,
    dump_grid,
    load_grid,
    parse_grid,
)
from speedcurrent.calibration.table import GridAxis
from speedcurrent.filters.kalman import KalmanState2D

ROWS = GridAxis(0.0, 4.0, 1.0)
COLS = GridAxis(-0.2, 0.2, 0.1)
Q = 1e-7


@pytest.fixture
def grid():
    g = CorrectionGrid(ROWS, COLS, process_noise=Q)
    g.set_state(2, 1, KalmanState2D(np.array([0.1, -0.05]), np.array([[0.02, 0.001], [0.001, 0.03]]), 12))
    g.set_state(3, 2, KalmanState2D(np.array([0.3, 0.0]), np.eye(2), 0))
    return g


class TestDump:
    """Unit tests for dump_grid."""

    def test_layout(self, grid):
        doc = dump_grid(grid)

        assert set(doc) == {"row", "col", "table"}
        assert doc["row"] == {"min": 0.0, "max": 4.0, "step": 1.0}
        assert len(doc["table"]) == 5
        assert all(len(row) == 5 for row in doc["table"])

    def test_learned_cell(self, grid):
        cell = dump_grid(grid)["table"][2][1]["state"]

        assert cell["mean"] == [[0.1], [-0.05]]
        assert cell["covariance"] == [[0.02, 0.001], [0.001, 0.03]]
        assert cell["index"] == 12

    def test_unlearned_cells_are_null(self, grid):
        table = dump_grid(grid)["table"]

        assert table[0][0] == {"state": None}
        assert table[3][2] == {"state": None}

    def test_json_serializable(self, grid):
        text = json.dumps(dump_grid(grid))
        assert json.loads(text)["table"][2][1]["state"]["index"] == 12

    def test_dump_shares_no_state(self, grid):
        doc = dump_grid(grid)
        doc["table"][2][1]["state"]["mean"][0][0] = 99.0

        assert grid.state_at(2, 1).x == pytest.approx(0.1)


class TestParse:
    """Unit tests for parse_grid."""

    def test_round_trip(self, grid):
        restored = parse_grid(json.loads(json.dumps(dump_grid(grid))), Q, ROWS, COLS)

        assert restored.shape == grid.shape
        original = grid.state_at(2, 1)
        cell = restored.state_at(2, 1)
        np.testing.assert_array_equal(cell.mean, original.mean)
        np.testing.assert_array_equal(cell.covariance, original.covariance)
        assert cell.index == 12
        assert restored.state_at(3, 2) is None
        assert restored.learned_cells == 1

    def test_without_expected_geometry(self, grid):
        restored = parse_grid(dump_grid(grid), Q)
        assert restored.row_axis == ROWS

    def test_process_noise_from_caller(self, grid):
        assert parse_grid(dump_grid(grid), 1e-5).process_noise == 1e-5

    def test_geometry_mismatch(self, grid):
        with pytest.raises(GeometryMismatchError):
            parse_grid(dump_grid(grid), Q, GridAxis(0.0, 4.0, 0.5), COLS)
        with pytest.raises(GeometryMismatchError):
            parse_grid(dump_grid(grid), Q, ROWS, GridAxis(-0.3, 0.3, 0.1))

    def test_mismatch_is_value_error(self):
        assert issubclass(GeometryMismatchError, ValueError)

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("table"),
        lambda d: d["table"].pop(),
        lambda d: d["table"][0].pop(),
        lambda d: d["row"].update(step=0.0),
        lambda d: d["row"].update(step=3.0),
        lambda d: d["table"][2][1]["state"].update(mean=[[0.1], [0.2], [0.3]]),
        lambda d: d["table"][2][1]["state"].update(covariance=[[1.0, 0.0]]),
        lambda d: d["table"][2][1]["state"].update(index=-1),
    ])
    def test_malformed(self, grid, mutate):
        doc = dump_grid(grid)
        mutate(doc)

        with pytest.raises(ValidationError):
            parse_grid(doc, Q)

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            parse_grid([1, 2, 3], Q)


class TestLoad:
    """Unit tests for load_grid."""

    def test_none_gives_fresh_grid(self):
        g = load_grid(None, ROWS, COLS, Q)

        assert g.shape == (5, 5)
        assert g.learned_cells == 0

    def test_matching_document(self, grid):
        g = load_grid(dump_grid(grid), ROWS, COLS, Q)
        assert g.cell_index(2.0, -0.1) == 12

    def test_mismatch_gives_fresh_grid(self, grid, caplog):
        new_rows = GridAxis(0.0, 4.0, 0.5)
        with caplog.at_level(logging.WARNING):
            g = load_grid(dump_grid(grid), new_rows, COLS, Q)

        assert g.shape == (9, 5)
        assert g.learned_cells == 0
        assert "discarding" in caplog.text

    def test_mismatch_resampled_when_allowed(self, grid):
        g = load_grid(dump_grid(grid), GridAxis(0.0, 4.0, 0.5), COLS, Q, allow_resample=True)

        assert g.shape == (9, 5)
        seeded = g.state_at(4, 1)  # speed 2.0, heel -0.1
        assert seeded.index == 1
        assert seeded.x == pytest.approx(0.1)

    def test_malformed_gives_fresh_grid(self, caplog):
        with caplog.at_level(logging.WARNING):
            g = load_grid({"row": "nonsense"}, ROWS, COLS, Q)

        assert g.learned_cells == 0
        assert g.shape == (5, 5)
        assert "malformed" in caplog.text
