"""Speed/heel correction grid: learning, interpolation, resampling and persistence."""

from .table import GridAxis, Table2D
from .correction_grid import Correction, CorrectionEstimate, CorrectionGrid
from .resampler import resample
from .persistence import GeometryMismatchError, dump_grid, load_grid, parse_grid

__all__ = [
    "GridAxis",
    "Table2D",
    "Correction",
    "CorrectionEstimate",
    "CorrectionGrid",
    "resample",
    "GeometryMismatchError",
    "dump_grid",
    "load_grid",
    "parse_grid",
]
