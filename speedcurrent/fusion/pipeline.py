"""
Speed and current fusion pipeline.

Combines heading, attitude, boat speed and ground speed/course into:
- a learned boat-frame correction for boat speed (sensor bias and leeway)
  as a function of speed and heel
- a corrected boat speed vector
- an estimate of the water current

Architecture:
    heading ───────┐
    attitude ──────┤                   ┌──> CorrectionGrid.update (when stable)
    ground speed ──┼──> LatestValues ──┤
    boat speed* ───┘                   ├──> corrected boat speed ──> sink
                                       └──> current ──────────────> sink
    * heartbeat: its arrival triggers one cycle

All mutable estimation state lives in a FusionContext owned by the pipeline.
Cycles run synchronously and never overlap; the grid is only replaced
wholesale (resampling), under the pipeline lock, so snapshots taken by
readers are always consistent.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from ..calibration.correction_grid import CorrectionGrid
from ..calibration.persistence import dump_grid, load_grid
from ..calibration.resampler import DEFAULT_VARIANCE_FLOOR, resample
from ..calibration.table import GridAxis
from ..config import FusionConfig
from ..filters.kalman import SmoothingFilter
from ..filters.stability import StabilityGate
from ..metrics import metrics
from ..sensors.polar_stats import PolarStatistics
from ..sensors.samples import (
    BOAT_SPEED,
    COURSE_OVER_GROUND,
    CURRENT,
    HEADING,
    LEEWAY,
    MAGNETIC_VARIATION,
    SPEED_OVER_GROUND,
    LatestValues,
    SensorSample,
)
from ..vectors import Vector2, angle_difference, rotate, wrap_angle

logger = logging.getLogger(__name__)

# Published instead of BOAT_SPEED when the raw sensor value must be kept
CORRECTED_BOAT_SPEED = "navigation.speedThroughWaterCorrected"

Sink = Callable[[str, Any], None]
SaveCallback = Callable[[dict], None]


@dataclass
class FusionReport:
    """
    Outcome of one fusion cycle.

    Vectors tagged ``ref_boat`` are boat-frame, ``ref_ground`` are
    ground-frame.
    """
    timestamp: datetime
    heading: float
    heel: float
    speed: float
    stable: bool
    heading_range: float
    course_range: float
    grid_updated: bool
    cell_index: int
    correction_weight: float

    ground_speed: Vector2 = field(default_factory=Vector2)
    boat_speed: Vector2 = field(default_factory=Vector2)
    correction: Vector2 = field(default_factory=Vector2)
    corrected_boat_speed: Vector2 = field(default_factory=Vector2)
    boat_speed_over_ground: Vector2 = field(default_factory=Vector2)
    current: Vector2 = field(default_factory=Vector2)
    residual: Vector2 = field(default_factory=Vector2)

    PLANES = {
        "ground_speed": ("ref_ground", "observed speed over ground"),
        "boat_speed": ("ref_boat", "observed boat speed"),
        "correction": ("ref_boat", "correction"),
        "corrected_boat_speed": ("ref_boat", "estimated boat speed"),
        "boat_speed_over_ground": ("ref_ground", "boat speed over ground"),
        "current": ("ref_ground", "current"),
        "residual": ("ref_ground", "residual"),
    }

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        polars = []
        for name, (plane, label) in self.PLANES.items():
            vector: Vector2 = getattr(self, name)
            polars.append({
                "id": name,
                "plane": plane,
                "label": label,
                "speed": vector.magnitude,
                "angle": vector.angle,
            })
        return {
            "timestamp": self.timestamp.isoformat(),
            "heading": self.heading,
            "heel": self.heel,
            "speed": self.speed,
            "stability": {
                "stable": self.stable,
                "heading_range": self.heading_range,
                "course_range": self.course_range,
            },
            "grid": {
                "updated": self.grid_updated,
                "cell_index": self.cell_index,
                "correction_weight": self.correction_weight,
            },
            "polars": polars,
        }


@dataclass
class FusionContext:
    """All estimation state of one pipeline."""
    config: FusionConfig
    grid: CorrectionGrid
    latest: LatestValues
    heading_gate: StabilityGate
    course_gate: StabilityGate
    ground_speed_stats: PolarStatistics
    current_stats: PolarStatistics
    boat_speed_stats: PolarStatistics
    boat_speed_smoother: SmoothingFilter
    current_smoother: SmoothingFilter
    current: Vector2 = field(default_factory=Vector2)
    last_save: Optional[datetime] = None
    grid_is_new: bool = True

    @classmethod
    def create(cls, config: FusionConfig, stored_grid: Optional[dict] = None) -> "FusionContext":
        """
        Build a context, reusing ``stored_grid`` unless a fresh start is asked.
        """
        if config.start_fresh or stored_grid is None:
            grid = CorrectionGrid(config.row_axis, config.col_axis, process_noise=config.process_noise)
            grid_is_new = True
            logger.info(f"Correction table created {grid.shape}")
        else:
            grid = load_grid(
                stored_grid,
                config.row_axis,
                config.col_axis,
                process_noise=config.process_noise,
                allow_resample=config.resample_on_geometry_change,
            )
            grid_is_new = grid.learned_cells == 0
            logger.info(f"Correction table loaded: {grid}")

        def gate() -> StabilityGate:
            return StabilityGate(tau=config.gate_tau, catchup_tau=config.gate_catchup_tau, is_angle=True)

        return cls(
            config=config,
            grid=grid,
            latest=LatestValues(own_source=config.source_id),
            heading_gate=gate(),
            course_gate=gate(),
            ground_speed_stats=PolarStatistics(config.statistics_window),
            current_stats=PolarStatistics(config.statistics_window),
            boat_speed_stats=PolarStatistics(config.statistics_window),
            boat_speed_smoother=SmoothingFilter(10.0 ** config.boat_speed_stability),
            current_smoother=SmoothingFilter(10.0 ** config.current_stability),
            grid_is_new=grid_is_new,
        )


class FusionPipeline:
    """
    Event-driven estimator.

    Usage:
        pipeline = FusionPipeline(config, sink=publish, save=store_grid,
                                  stored_grid=previous_document)
        pipeline.start()

        # Feed every sample from the bus; the heartbeat triggers a cycle
        report = pipeline.on_sample(sample)

        # Read-only views for status pages
        grid = pipeline.snapshot_grid()
        status = pipeline.get_report()

        pipeline.stop()  # saves the grid
    """

    def __init__(
        self,
        config: FusionConfig,
        sink: Optional[Sink] = None,
        save: Optional[SaveCallback] = None,
        stored_grid: Optional[dict] = None,
    ):
        """
        Args:
            config: Engine configuration
            sink: Receives (path, value) for every computed output
            save: Receives the serialized grid for persistence
            stored_grid: Previously saved grid document, if any
        """
        self.config = config
        self._sink = sink
        self._save = save
        self._context = FusionContext.create(config, stored_grid)
        self._lock = Lock()
        self._running = False
        self._last_report: Optional[FusionReport] = None
        self._callbacks: List[Callable[[FusionReport], None]] = []

    @property
    def context(self) -> FusionContext:
        return self._context

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start processing samples. A newly created grid is saved at once."""
        self._running = True
        if self._context.grid_is_new:
            self.save_grid()
        logger.info("Fusion pipeline started")

    def stop(self):
        """Stop processing and save the grid."""
        self._running = False
        self.save_grid()
        logger.info("Fusion pipeline stopped")

    def register_callback(self, callback: Callable[[FusionReport], None]):
        """Register callback receiving every cycle's report."""
        self._callbacks.append(callback)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def on_sample(self, sample: SensorSample) -> Optional[FusionReport]:
        """
        Record ``sample``; run a cycle if it is the heartbeat.

        Returns:
            The cycle's report, or None when no cycle ran
        """
        if not self._running:
            return None
        accepted = self._context.latest.accept(sample)
        if accepted and sample.path == self.config.heartbeat:
            return self.run_cycle(sample.timestamp)
        return None

    def run_cycle(self, timestamp: datetime) -> Optional[FusionReport]:
        """Run one estimation cycle on the latest values."""
        with metrics.timer("fusion_cycle"):
            with self._lock:
                report = self._cycle(timestamp)

        if report is None:
            metrics.increment("fusion_cycles_rejected")
            return None

        metrics.increment("fusion_cycles_processed")
        metrics.set_gauge("correction_cell_index", report.cell_index)
        self._last_report = report
        self._publish(report)
        self._maybe_save(timestamp)

        for cb in self._callbacks:
            cb(report)
        return report

    def _cycle(self, timestamp: datetime) -> Optional[FusionReport]:
        ctx = self._context
        cfg = self.config

        heel = ctx.latest.attitude.roll
        speed = ctx.latest.get_float(BOAT_SPEED)
        heading = ctx.latest.get_float(HEADING)
        for name, value in (("Heel", heel), ("Speed", speed), ("Heading", heading)):
            if not math.isfinite(value):
                logger.debug(f"{name} is not a valid number, skipping calculation")
                return None

        sog = ctx.latest.get_float(SPEED_OVER_GROUND)
        cog = ctx.latest.get_float(COURSE_OVER_GROUND)
        has_ground = math.isfinite(sog) and math.isfinite(cog)
        ground = Vector2.from_polar(sog, cog) if has_ground else Vector2()
        observed = Vector2(speed, 0.0)

        # Statistics feed the grid's observation covariance
        if has_ground:
            ctx.ground_speed_stats.sample(ground)
        ctx.current_stats.sample(ctx.current)
        ctx.boat_speed_stats.sample(observed)

        ctx.heading_gate.update(heading, timestamp)
        ctx.course_gate.update(cog, timestamp)
        stable = (
            ctx.heading_gate.is_stable(cfg.stability_threshold)
            and ctx.course_gate.is_stable(cfg.stability_threshold)
        )

        grid_updated = False
        if cfg.update_correction_table and stable and speed > 0:
            grid_updated = ctx.grid.update(
                speed,
                heel,
                ctx.ground_speed_stats.snapshot(),
                ctx.current_stats.snapshot(),
                ctx.boat_speed_stats.snapshot(),
                heading,
            )
            metrics.increment("grid_updates_applied" if grid_updated else "grid_updates_skipped")

        correction = ctx.grid.query(speed, heel)
        corrected = observed + correction.vector
        if cfg.boat_speed_stability > 0:
            corrected = ctx.boat_speed_smoother.update(corrected)
        over_ground = rotate(corrected, -heading)

        if (cfg.assume_current or cfg.estimate_current) and has_ground:
            ctx.current = ctx.current_smoother.update(ground - over_ground)

        residual = ground - over_ground - ctx.current

        return FusionReport(
            timestamp=timestamp,
            heading=heading,
            heel=heel,
            speed=speed,
            stable=stable,
            heading_range=ctx.heading_gate.range,
            course_range=ctx.course_gate.range,
            grid_updated=grid_updated,
            cell_index=ctx.grid.cell_index(speed, heel),
            correction_weight=correction.total_weight,
            ground_speed=ground,
            boat_speed=observed,
            correction=correction.vector,
            corrected_boat_speed=corrected,
            boat_speed_over_ground=over_ground,
            current=ctx.current,
            residual=residual,
        )

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def current_message(self, current: Vector2) -> Dict[str, Optional[float]]:
        """Current as drift and set (true and, when known, magnetic)."""
        variation = self._context.latest.get_float(MAGNETIC_VARIATION)
        set_true = current.angle
        set_magnetic = None
        if math.isfinite(variation):
            set_magnetic = angle_difference(set_true, variation)
        return {"drift": current.magnitude, "setTrue": wrap_angle(set_true), "setMagnetic": set_magnetic}

    def _publish(self, report: FusionReport):
        if self._sink is None:
            return
        messages = []
        if self.config.estimate_boat_speed:
            path = BOAT_SPEED if self.config.prevent_duplication else CORRECTED_BOAT_SPEED
            messages.append((path, report.corrected_boat_speed.magnitude))
            messages.append((LEEWAY, report.corrected_boat_speed.angle))
        if self.config.estimate_current:
            messages.append((CURRENT, self.current_message(report.current)))

        for path, value in messages:
            try:
                self._sink(path, value)
            except Exception as e:
                logger.error(f"Failed to publish {path}: {e}")

    # ------------------------------------------------------------------
    # Persistence and grid access
    # ------------------------------------------------------------------

    def _maybe_save(self, timestamp: datetime):
        ctx = self._context
        if ctx.last_save is None:
            ctx.last_save = timestamp
            return
        if not self.config.update_correction_table:
            return
        if (timestamp - ctx.last_save).total_seconds() >= self.config.save_interval_s:
            self.save_grid()
            ctx.last_save = timestamp

    def grid_document(self) -> dict:
        """Serialized copy of the current grid."""
        with self._lock:
            return dump_grid(self._context.grid)

    def save_grid(self) -> bool:
        """Hand the serialized grid to the save callback. Never raises."""
        if self._save is None:
            return False
        document = self.grid_document()
        try:
            self._save(document)
        except Exception as e:
            logger.error(f"Failed to save correction table: {e}")
            return False
        metrics.increment("grid_saves")
        logger.debug("Correction table saved")
        return True

    def snapshot_grid(self) -> CorrectionGrid:
        """Deep copy of the grid, safe to read while cycles run."""
        with self._lock:
            return self._context.grid.copy()

    def resize_grid(
        self,
        row_axis: GridAxis,
        col_axis: GridAxis,
        variance_floor: float = DEFAULT_VARIANCE_FLOOR,
    ) -> CorrectionGrid:
        """Replace the grid with one resampled onto a new geometry."""
        with self._lock:
            new_grid = resample(self._context.grid, row_axis, col_axis, variance_floor=variance_floor)
            self._context.grid = new_grid
        logger.info(f"Correction table resized to {new_grid.shape}")
        return new_grid.copy()

    def get_report(self) -> Optional[dict]:
        """Latest cycle report, with grid info and metrics."""
        report = self._last_report
        if report is None:
            return None
        result = report.to_dict()
        result["table"] = self.snapshot_grid().info()
        result["options"] = {
            "update_correction_table": self.config.update_correction_table,
            "estimate_boat_speed": self.config.estimate_boat_speed,
            "assume_current": self.config.assume_current,
            "estimate_current": self.config.estimate_current,
        }
        result["metrics"] = metrics.get_summary()
        return result
