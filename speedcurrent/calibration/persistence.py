"""
Serialized correction grid.

Persisted format (JSON-compatible):

    {
      "row": {"min", "max", "step"},          # speed axis, m/s
      "col": {"min", "max", "step"},          # heel axis, rad
      "table": [[{"state": null | {"mean": [[x], [y]],
                                   "covariance": [[a, b], [c, d]],
                                   "index": n}}, ...], ...]
    }

Row-major: outer list is speed, inner list is heel. Unlearned cells (no
state, or index 0) are written as ``{"state": null}``.

The pydantic models below are the only place the format is defined. Live
grid cells are never handed out; dumping copies every value.
"""

import logging
from typing import Any, List, Optional

import numpy as np
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..filters.kalman import KalmanState2D
from .correction_grid import CorrectionGrid
from .resampler import DEFAULT_VARIANCE_FLOOR, resample
from .table import GridAxis

logger = logging.getLogger(__name__)


class GeometryMismatchError(ValueError):
    """Persisted grid geometry differs from the configured geometry."""


class AxisModel(BaseModel):
    min: float
    max: float
    step: float = Field(..., gt=0)

    def to_axis(self) -> GridAxis:
        return GridAxis(self.min, self.max, self.step)

    @classmethod
    def from_axis(cls, axis: GridAxis) -> "AxisModel":
        return cls(min=axis.min, max=axis.max, step=axis.step)


class FilterStateModel(BaseModel):
    mean: List[List[float]]
    covariance: List[List[float]]
    index: int = Field(..., ge=0)

    @field_validator("mean")
    @classmethod
    def _column_vector(cls, v):
        if len(v) != 2 or any(len(r) != 1 for r in v):
            raise ValueError("mean must be a 2x1 column vector")
        return v

    @field_validator("covariance")
    @classmethod
    def _square(cls, v):
        if len(v) != 2 or any(len(r) != 2 for r in v):
            raise ValueError("covariance must be 2x2")
        return v

    def to_state(self) -> KalmanState2D:
        return KalmanState2D(
            mean=np.array([self.mean[0][0], self.mean[1][0]], dtype=float),
            covariance=np.array(self.covariance, dtype=float),
            index=self.index,
        )

    @classmethod
    def from_state(cls, state: KalmanState2D) -> "FilterStateModel":
        return cls(**state.to_dict())


class CellModel(BaseModel):
    state: Optional[FilterStateModel] = None


class GridDocument(BaseModel):
    row: AxisModel
    col: AxisModel
    table: List[List[CellModel]]

    @model_validator(mode="after")
    def _table_matches_axes(self):
        try:
            rows = self.row.to_axis().count
            cols = self.col.to_axis().count
        except ValueError as e:
            raise ValueError(f"invalid axis: {e}")
        if len(self.table) != rows or any(len(r) != cols for r in self.table):
            raise ValueError(f"table shape does not match axes ({rows}x{cols})")
        return self


def dump_grid(grid: CorrectionGrid) -> dict:
    """Serialize ``grid`` to a plain dict."""
    rows, cols = grid.shape
    table = [[CellModel() for _ in range(cols)] for _ in range(rows)]
    for (row, col), state in grid.states():
        if state is not None and state.index > 0:
            table[row][col] = CellModel(state=FilterStateModel.from_state(state))
    document = GridDocument(
        row=AxisModel.from_axis(grid.row_axis),
        col=AxisModel.from_axis(grid.col_axis),
        table=table,
    )
    return document.model_dump()


def parse_grid(
    data: Any,
    process_noise: float,
    row_axis: Optional[GridAxis] = None,
    col_axis: Optional[GridAxis] = None,
) -> CorrectionGrid:
    """
    Rebuild a grid from its serialized form.

    Raises:
        pydantic.ValidationError: malformed document
        GeometryMismatchError: document axes differ from row_axis/col_axis
    """
    document = GridDocument.model_validate(data)
    stored_row = document.row.to_axis()
    stored_col = document.col.to_axis()

    if row_axis is not None and not stored_row.matches(row_axis):
        raise GeometryMismatchError(f"speed axis {stored_row} != configured {row_axis}")
    if col_axis is not None and not stored_col.matches(col_axis):
        raise GeometryMismatchError(f"heel axis {stored_col} != configured {col_axis}")

    grid = CorrectionGrid(stored_row, stored_col, process_noise=process_noise)
    for r, cells in enumerate(document.table):
        for c, cell in enumerate(cells):
            if cell.state is not None:
                grid.set_state(r, c, cell.state.to_state())
    return grid


def load_grid(
    data: Any,
    row_axis: GridAxis,
    col_axis: GridAxis,
    process_noise: float,
    allow_resample: bool = False,
    variance_floor: float = DEFAULT_VARIANCE_FLOOR,
) -> CorrectionGrid:
    """
    Grid for the configured geometry, reusing ``data`` when possible.

    Never raises: a missing or malformed document gives a fresh grid. A
    document with different geometry gives a fresh grid, or a resampled one
    when ``allow_resample`` is set.
    """
    if data is None:
        logger.info("No stored correction grid, creating a fresh one")
        return CorrectionGrid(row_axis, col_axis, process_noise=process_noise)

    try:
        return parse_grid(data, process_noise, row_axis, col_axis)
    except GeometryMismatchError as e:
        if allow_resample:
            logger.info(f"Stored grid geometry differs ({e}), resampling")
            stored = parse_grid(data, process_noise)
            return resample(stored, row_axis, col_axis, variance_floor=variance_floor)
        logger.warning(f"Stored grid geometry differs ({e}), discarding learned corrections")
    except ValidationError as e:
        logger.warning(f"Stored grid is malformed, discarding it: {e.error_count()} errors")

    return CorrectionGrid(row_axis, col_axis, process_noise=process_noise)
