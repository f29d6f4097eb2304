"""Boat speed calibration and current estimation from marine sensor streams."""

__version__ = "0.1.0"
