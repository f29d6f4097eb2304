"""Sensor fusion for boat speed, leeway and current."""

from .pipeline import FusionContext, FusionPipeline, FusionReport

__all__ = ["FusionContext", "FusionPipeline", "FusionReport"]
