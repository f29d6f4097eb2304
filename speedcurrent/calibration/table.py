"""
Fixed-geometry 2D tables.

``GridAxis`` describes one regularly spaced axis; ``Table2D`` is a generic
rows x columns array of cells over two axes with nearest-cell indexing and
bracketing-neighbour lookup. The correction grid is a ``Table2D`` of
optional Kalman states, but nothing here knows about filters.
"""

import math
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, List, Tuple, TypeVar

T = TypeVar("T")

# Fractional indices this close to an integer are treated as exact
INDEX_SNAP = 1e-9

# Relative tolerance when checking that step divides the range
DIVISION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class GridAxis:
    """Regularly spaced axis from ``min`` to ``max`` inclusive."""
    min: float
    max: float
    step: float

    def __post_init__(self):
        if not all(math.isfinite(v) for v in (self.min, self.max, self.step)):
            raise ValueError(f"Axis bounds must be finite: {self}")
        if self.step <= 0:
            raise ValueError(f"Axis step must be positive, got {self.step}")
        if self.max <= self.min:
            raise ValueError(f"Axis max ({self.max}) must exceed min ({self.min})")
        intervals = (self.max - self.min) / self.step
        if abs(intervals - round(intervals)) > DIVISION_TOLERANCE * max(1.0, intervals):
            raise ValueError(
                f"Axis step {self.step} does not divide range [{self.min}, {self.max}]"
            )

    @classmethod
    def speed(cls, max_speed: float, step: float) -> "GridAxis":
        """Speed axis over [0, max_speed]."""
        return cls(0.0, max_speed, step)

    @classmethod
    def heel(cls, max_heel: float, step: float) -> "GridAxis":
        """Heel axis symmetric about zero."""
        return cls(-max_heel, max_heel, step)

    @property
    def count(self) -> int:
        return int(round((self.max - self.min) / self.step)) + 1

    def center(self, index: int) -> float:
        return self.min + index * self.step

    def clamp(self, value: float) -> float:
        return min(max(value, self.min), self.max)

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def fractional_index(self, value: float) -> float:
        """Position of ``value`` in cell units, after clamping."""
        position = (self.clamp(value) - self.min) / self.step
        nearest = round(position)
        if abs(position - nearest) < INDEX_SNAP:
            return float(nearest)
        return position

    def nearest_index(self, value: float) -> int:
        """Index of the cell whose center is nearest to ``value``."""
        # half-up rounding, not banker's rounding
        index = math.floor((value - self.min) / self.step + 0.5)
        return max(0, min(index, self.count - 1))

    def bracket(self, value: float) -> List[int]:
        """Indices of the cells on either side of ``value`` (one if exact)."""
        position = self.fractional_index(value)
        low = max(0, min(math.floor(position), self.count - 1))
        high = max(0, min(math.ceil(position), self.count - 1))
        return [low] if low == high else [low, high]

    def matches(self, other: "GridAxis") -> bool:
        return all(
            math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)
            for a, b in ((self.min, other.min), (self.max, other.max), (self.step, other.step))
        )

    def to_dict(self) -> dict:
        return {"min": self.min, "max": self.max, "step": self.step}


@dataclass(frozen=True)
class Neighbour(Generic[T]):
    """A cell bracketing a query point."""
    row: int
    col: int
    distance: float
    cell: T


class Table2D(Generic[T]):
    """
    Rows x columns array of cells indexed by (row value, column value).

    Geometry is fixed at construction; only cell contents change.
    """

    def __init__(self, row_axis: GridAxis, col_axis: GridAxis, factory: Callable[[], T]):
        self.row_axis = row_axis
        self.col_axis = col_axis
        self._cells: List[List[T]] = [
            [factory() for _ in range(col_axis.count)]
            for _ in range(row_axis.count)
        ]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.row_axis.count, self.col_axis.count

    def indices(self, row_value: float, col_value: float) -> Tuple[int, int]:
        """Nearest cell, clamped to the table."""
        return (
            self.row_axis.nearest_index(self.row_axis.clamp(row_value)),
            self.col_axis.nearest_index(self.col_axis.clamp(col_value)),
        )

    def __getitem__(self, key: Tuple[int, int]) -> T:
        row, col = key
        return self._cells[row][col]

    def __setitem__(self, key: Tuple[int, int], value: T):
        row, col = key
        self._cells[row][col] = value

    def cell_center(self, row: int, col: int) -> Tuple[float, float]:
        return self.row_axis.center(row), self.col_axis.center(col)

    def normalized_distance(self, row_value: float, col_value: float, row: int, col: int) -> float:
        """Euclidean distance to a cell center, in cell units."""
        d_row = (row_value - self.row_axis.center(row)) / self.row_axis.step
        d_col = (col_value - self.col_axis.center(col)) / self.col_axis.step
        return math.hypot(d_row, d_col)

    def neighbours(self, row_value: float, col_value: float) -> List[Neighbour[T]]:
        """Up to four cells bracketing the (clamped) point."""
        row_value = self.row_axis.clamp(row_value)
        col_value = self.col_axis.clamp(col_value)
        result = []
        for row in self.row_axis.bracket(row_value):
            for col in self.col_axis.bracket(col_value):
                distance = self.normalized_distance(row_value, col_value, row, col)
                result.append(Neighbour(row, col, distance, self._cells[row][col]))
        return result

    def items(self) -> Iterator[Tuple[Tuple[int, int], T]]:
        for row, cells in enumerate(self._cells):
            for col, cell in enumerate(cells):
                yield (row, col), cell

    def rows(self) -> List[List[T]]:
        """Shallow copy of the cell lists."""
        return [list(cells) for cells in self._cells]
