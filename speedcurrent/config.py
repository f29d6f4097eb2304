"""
Configuration for the speed and current estimator.

Settings come from environment variables (prefix ``SPEEDCURRENT_``), with a
``.env`` file loaded for local development. Geometry is configured in the
units sailors use (knots, degrees) and converted to SI in ``FusionConfig``.

Usage:
    from speedcurrent.config import settings, FusionConfig

    settings.configure_logging()
    config = FusionConfig.from_settings(settings)
"""

import logging
import math
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .calibration.table import GridAxis
from .sensors.samples import BOAT_SPEED, INPUT_PATHS
from .vectors import knots_to_ms

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

PREFIX = "SPEEDCURRENT_"


def get_str(key: str, default: str) -> str:
    return os.getenv(PREFIX + key, default)


def get_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(PREFIX + key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def get_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    try:
        return float(os.getenv(PREFIX + key, str(default)))
    except (ValueError, TypeError):
        return default


def get_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(PREFIX + key, str(default)))
    except (ValueError, TypeError):
        return default


class OperatingMode(str, Enum):
    """Presets guiding a boat from an empty table to a mature one."""
    START_NEW = "Start with new correction table, no current"
    START_NEW_WITH_CURRENT = "Start with new correction table, with current"
    FRESH = "Fresh correction table, no current"
    FRESH_WITH_CURRENT = "Fresh correction table, with current"
    MATURE = "Mature correction table, no current"
    MATURE_WITH_CURRENT = "Mature correction table, with current"
    LOCKED = "Locked correction table"
    MANUAL = "Manual configuration"


# Flags and stability exponents per mode; MANUAL leaves everything alone
MODE_PRESETS = {
    OperatingMode.START_NEW: dict(
        start_fresh=True, update_correction_table=True, estimate_boat_speed=False,
        assume_current=False, estimate_current=False, correction_stability=5.0,
    ),
    OperatingMode.START_NEW_WITH_CURRENT: dict(
        start_fresh=True, update_correction_table=True, estimate_boat_speed=False,
        assume_current=True, estimate_current=False, correction_stability=5.0,
        current_stability=7.0,
    ),
    OperatingMode.FRESH: dict(
        start_fresh=False, update_correction_table=True, estimate_boat_speed=False,
        assume_current=False, estimate_current=False, correction_stability=6.0,
    ),
    OperatingMode.FRESH_WITH_CURRENT: dict(
        start_fresh=False, update_correction_table=True, estimate_boat_speed=False,
        assume_current=True, estimate_current=False, correction_stability=6.0,
        current_stability=6.0,
    ),
    OperatingMode.MATURE: dict(
        start_fresh=False, update_correction_table=True, estimate_boat_speed=True,
        assume_current=False, estimate_current=False, correction_stability=8.0,
    ),
    OperatingMode.MATURE_WITH_CURRENT: dict(
        start_fresh=False, update_correction_table=True, estimate_boat_speed=True,
        assume_current=True, estimate_current=True, correction_stability=8.0,
        current_stability=3.0,
    ),
    OperatingMode.LOCKED: dict(
        start_fresh=False, update_correction_table=False, estimate_boat_speed=False,
        assume_current=True, estimate_current=True, current_stability=2.0,
    ),
    OperatingMode.MANUAL: {},
}

# A "start new" mode wipes the table once, then continues as "fresh"
NEXT_MODE = {
    OperatingMode.START_NEW: OperatingMode.FRESH,
    OperatingMode.START_NEW_WITH_CURRENT: OperatingMode.FRESH_WITH_CURRENT,
}


@dataclass
class Settings:
    """Estimator settings loaded from environment."""

    mode: str = field(default_factory=lambda: get_str("MODE", OperatingMode.START_NEW.value))

    # Correction table geometry
    max_speed_kts: float = field(default_factory=lambda: get_float("MAX_SPEED_KTS", 9.0))
    speed_step_kts: float = field(default_factory=lambda: get_float("SPEED_STEP_KTS", 1.0))
    max_heel_deg: float = field(default_factory=lambda: get_float("MAX_HEEL_DEG", 32.0))
    heel_step_deg: float = field(default_factory=lambda: get_float("HEEL_STEP_DEG", 8.0))

    # Behaviour flags
    prevent_duplication: bool = field(default_factory=lambda: get_bool("PREVENT_DUPLICATION", True))
    update_correction_table: bool = field(default_factory=lambda: get_bool("UPDATE_CORRECTION_TABLE", True))
    estimate_boat_speed: bool = field(default_factory=lambda: get_bool("ESTIMATE_BOAT_SPEED", True))
    start_fresh: bool = field(default_factory=lambda: get_bool("START_FRESH", False))
    assume_current: bool = field(default_factory=lambda: get_bool("ASSUME_CURRENT", False))
    estimate_current: bool = field(default_factory=lambda: get_bool("ESTIMATE_CURRENT", True))
    resample_on_geometry_change: bool = field(
        default_factory=lambda: get_bool("RESAMPLE_ON_GEOMETRY_CHANGE", False)
    )

    # Stability exponents: noise ratio is 10 ** -stability
    correction_stability: float = field(default_factory=lambda: get_float("CORRECTION_STABILITY", 7.0))
    current_stability: float = field(default_factory=lambda: get_float("CURRENT_STABILITY", 5.0))
    boat_speed_stability: float = field(default_factory=lambda: get_float("BOAT_SPEED_STABILITY", 1.0))

    # Stability gate
    stability_threshold_deg: float = field(default_factory=lambda: get_float("STABILITY_THRESHOLD_DEG", 5.0))
    gate_tau_s: float = field(default_factory=lambda: get_float("GATE_TAU_S", 2.0))
    gate_catchup_tau_s: float = field(default_factory=lambda: get_float("GATE_CATCHUP_TAU_S", 0.5))

    # Cycle and persistence
    heartbeat: str = field(default_factory=lambda: get_str("HEARTBEAT", BOAT_SPEED))
    statistics_window: int = field(default_factory=lambda: get_int("STATISTICS_WINDOW", 20))
    save_interval_s: float = field(default_factory=lambda: get_float("SAVE_INTERVAL_S", 300.0))
    source_id: str = field(default_factory=lambda: get_str("SOURCE_ID", "speedcurrent"))

    # Logging
    log_level: str = field(default_factory=lambda: get_str("LOG_LEVEL", "INFO"))
    log_format: str = field(
        default_factory=lambda: get_str(
            "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    )

    def __post_init__(self):
        """Validate settings, falling back to defaults where out of range."""
        if self.mode not in {m.value for m in OperatingMode}:
            logging.warning(f"Unknown mode {self.mode!r}, using manual configuration")
            self.mode = OperatingMode.MANUAL.value

        if not 5.0 <= self.correction_stability <= 12.0:
            logging.warning(
                f"Correction stability {self.correction_stability} outside [5, 12], using 7"
            )
            self.correction_stability = 7.0

        if not 1.0 <= self.current_stability <= 8.0:
            logging.warning(
                f"Current stability {self.current_stability} outside [1, 8], using 5"
            )
            self.current_stability = 5.0

        try:
            GridAxis.speed(self.max_speed_kts, self.speed_step_kts)
        except ValueError as e:
            logging.warning(f"Invalid speed axis ({e}), using 9 kts in steps of 1 kt")
            self.max_speed_kts, self.speed_step_kts = 9.0, 1.0

        try:
            GridAxis.heel(self.max_heel_deg, self.heel_step_deg)
        except ValueError as e:
            logging.warning(f"Invalid heel axis ({e}), using 32 deg in steps of 8 deg")
            self.max_heel_deg, self.heel_step_deg = 32.0, 8.0

        if self.heartbeat not in INPUT_PATHS:
            logging.warning(f"Unknown heartbeat path {self.heartbeat!r}, using {BOAT_SPEED}")
            self.heartbeat = BOAT_SPEED

        if self.statistics_window < 2:
            logging.warning(f"Statistics window {self.statistics_window} too small, using 20")
            self.statistics_window = 20

        if self.gate_tau_s <= 0 or self.gate_catchup_tau_s <= 0:
            logging.warning("Gate time constants must be positive, using 2 s / 0.5 s")
            self.gate_tau_s, self.gate_catchup_tau_s = 2.0, 0.5

    @property
    def operating_mode(self) -> OperatingMode:
        return OperatingMode(self.mode)

    def apply_mode(self) -> "Settings":
        """
        Settings with the current mode's presets applied.

        "Start new" modes are replaced by their "fresh" counterpart in the
        result (with ``start_fresh`` still set) so that persisting the
        returned settings does not wipe the table again on the next start.
        """
        mode = self.operating_mode
        applied = replace(self, **MODE_PRESETS[mode])
        if mode in NEXT_MODE:
            applied.mode = NEXT_MODE[mode].value
        logging.getLogger(__name__).debug(f"Applied presets for mode {mode.value!r}")
        return applied

    def configure_logging(self):
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        logging.basicConfig(level=level, format=self.log_format)


@dataclass(frozen=True)
class FusionConfig:
    """Validated engine configuration in SI units."""
    row_axis: GridAxis
    col_axis: GridAxis
    correction_stability: float = 7.0
    current_stability: float = 5.0
    boat_speed_stability: float = 1.0
    update_correction_table: bool = True
    estimate_boat_speed: bool = True
    prevent_duplication: bool = True
    assume_current: bool = False
    estimate_current: bool = True
    start_fresh: bool = False
    resample_on_geometry_change: bool = False
    stability_threshold: float = math.radians(5.0)
    gate_tau: float = 2.0
    gate_catchup_tau: float = 0.5
    heartbeat: str = BOAT_SPEED
    statistics_window: int = 20
    save_interval_s: float = 300.0
    source_id: str = "speedcurrent"

    @property
    def process_noise(self) -> float:
        """Correction grid process noise."""
        return 10.0 ** (-self.correction_stability)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "FusionConfig":
        """Convert settings (after applying the mode) to SI units."""
        s = settings.apply_mode()
        return cls(
            row_axis=GridAxis.speed(knots_to_ms(s.max_speed_kts), knots_to_ms(s.speed_step_kts)),
            col_axis=GridAxis.heel(math.radians(s.max_heel_deg), math.radians(s.heel_step_deg)),
            correction_stability=s.correction_stability,
            current_stability=s.current_stability,
            boat_speed_stability=s.boat_speed_stability,
            update_correction_table=s.update_correction_table,
            estimate_boat_speed=s.estimate_boat_speed,
            prevent_duplication=s.prevent_duplication,
            assume_current=s.assume_current,
            estimate_current=s.estimate_current,
            start_fresh=s.start_fresh,
            resample_on_geometry_change=s.resample_on_geometry_change,
            stability_threshold=math.radians(s.stability_threshold_deg),
            gate_tau=s.gate_tau_s,
            gate_catchup_tau=s.gate_catchup_tau_s,
            heartbeat=s.heartbeat,
            statistics_window=s.statistics_window,
            save_interval_s=s.save_interval_s,
            source_id=s.source_id,
        )


# Singleton instance
settings = Settings()


def get_settings() -> Settings:
    """Get the settings instance (useful for dependency injection)."""
    return settings
