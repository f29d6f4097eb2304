"""
Shared pytest fixtures for speedcurrent tests.

The metrics collector is process-wide, so it is reset around every test.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from speedcurrent.calibration.table import GridAxis  # noqa: E402
from speedcurrent.config import FusionConfig  # noqa: E402
from speedcurrent.metrics import metrics  # noqa: E402

# 0..5 m/s in 0.5 m/s rows, -0.6..0.6 rad in 0.15 rad columns
SPEED_AXIS = GridAxis.speed(5.0, 0.5)
HEEL_AXIS = GridAxis.heel(0.6, 0.15)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty counters."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def t0():
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_config():
    """Factory for a learning configuration on the test geometry."""
    def factory(**overrides) -> FusionConfig:
        params = dict(
            row_axis=SPEED_AXIS,
            col_axis=HEEL_AXIS,
            correction_stability=5.0,
            assume_current=False,
            estimate_current=False,
        )
        params.update(overrides)
        return FusionConfig(**params)
    return factory
