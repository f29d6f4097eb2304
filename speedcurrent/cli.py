#!/usr/bin/env python3
"""
Speed and current estimator CLI.

Offline tools around the estimation engine:
- simulate a sailing session and learn a correction table
- inspect a stored correction table
- resample a stored table onto a new geometry

Usage:
    python -m speedcurrent.cli simulate --seconds 600 --heel-deg 12 --output table.json
    python -m speedcurrent.cli inspect table.json
    python -m speedcurrent.cli resample table.json --speed-step-kts 0.5 --output finer.json
"""
import argparse
import json
import logging
import math
import sys
from pathlib import Path
from typing import List, Optional

from .calibration.persistence import dump_grid, parse_grid
from .calibration.resampler import DEFAULT_VARIANCE_FLOOR, resample
from .calibration.table import GridAxis
from .config import FusionConfig, settings
from .fusion.pipeline import FusionPipeline
from .sensors.simulator import BoatSimulator, SimulatedConditions
from .vectors import Vector2, knots_to_ms, ms_to_knots

logger = logging.getLogger(__name__)


def _read_table(path: str) -> Optional[dict]:
    file = Path(path)
    if not file.exists():
        return None
    return json.loads(file.read_text())


def _write_table(path: str, document: dict) -> None:
    file = Path(path)
    file.parent.mkdir(parents=True, exist_ok=True)
    file.write_text(json.dumps(document, indent=2))


def simulate(args: argparse.Namespace) -> int:
    """Run the simulator through a pipeline and report what was learned."""
    config = FusionConfig.from_settings(settings)
    stored = _read_table(args.input) if args.input else None
    saved = []
    pipeline = FusionPipeline(config, save=saved.append, stored_grid=stored)

    sim = BoatSimulator(
        speed_bias=args.speed_bias,
        leeway_per_heel=args.leeway_per_heel,
        seed=args.seed,
    )
    conditions = SimulatedConditions(
        speed=knots_to_ms(args.speed_kts),
        heading=math.radians(args.heading_deg),
        heel=math.radians(args.heel_deg),
        current=Vector2.from_polar(knots_to_ms(args.current_kts), math.radians(args.current_dir_deg)),
    )

    pipeline.start()
    report = None
    for sample in sim.run(conditions, args.seconds):
        report = pipeline.on_sample(sample) or report
    pipeline.stop()

    if report is None:
        print("No cycles ran.")
        return 1

    truth = sim.true_correction(conditions.speed, conditions.heel)
    print("\n" + "=" * 60)
    print("SIMULATION SUMMARY")
    print("=" * 60)
    print(f"Cycles:              {args.seconds}")
    print(f"Learned cells:       {pipeline.snapshot_grid().learned_cells}")
    print(f"Cell updates:        {report.cell_index}")
    print(f"Correction (kts):    x={ms_to_knots(report.correction.x):+.3f} y={ms_to_knots(report.correction.y):+.3f}")
    print(f"True correction:     x={ms_to_knots(truth.x):+.3f} y={ms_to_knots(truth.y):+.3f}")
    print(f"Corrected speed:     {ms_to_knots(report.corrected_boat_speed.magnitude):.2f} kts")
    print(f"Leeway:              {math.degrees(report.corrected_boat_speed.angle):+.1f} deg")
    print(f"Current:             {ms_to_knots(report.current.magnitude):.2f} kts "
          f"towards {math.degrees(report.current.angle) % 360:.0f} deg")
    print("=" * 60 + "\n")

    if args.output and saved:
        _write_table(args.output, saved[-1])
        print(f"Correction table written to {args.output}")
    return 0


def inspect(args: argparse.Namespace) -> int:
    """Print the learned cells of a stored table."""
    document = _read_table(args.table)
    if document is None:
        print(f"No such file: {args.table}")
        return 1
    grid = parse_grid(document, process_noise=10.0 ** (-settings.correction_stability))

    print(f"\n{grid}")
    print(f"{'Speed (kts)':>12} {'Heel (deg)':>11} {'N':>7} {'x (kts)':>9} {'y (kts)':>9} {'trace':>10}")
    print("-" * 62)
    for (row, col), state in grid.states():
        if state is None or state.index == 0:
            continue
        speed = ms_to_knots(grid.row_axis.center(row))
        heel = math.degrees(grid.col_axis.center(col))
        print(f"{speed:>12.1f} {heel:>11.1f} {state.index:>7d} "
              f"{ms_to_knots(state.x):>+9.3f} {ms_to_knots(state.y):>+9.3f} {state.trace:>10.2e}")
    return 0


def resample_table(args: argparse.Namespace) -> int:
    """Resample a stored table onto a new geometry."""
    document = _read_table(args.table)
    if document is None:
        print(f"No such file: {args.table}")
        return 1
    grid = parse_grid(document, process_noise=10.0 ** (-settings.correction_stability))

    row_axis = GridAxis.speed(knots_to_ms(args.max_speed_kts), knots_to_ms(args.speed_step_kts))
    col_axis = GridAxis.heel(math.radians(args.max_heel_deg), math.radians(args.heel_step_deg))
    new_grid = resample(grid, row_axis, col_axis, variance_floor=args.variance_floor)

    _write_table(args.output, dump_grid(new_grid))
    print(f"{grid} -> {new_grid} written to {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speedcurrent",
        description="Boat speed calibration and current estimation tools",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Learn a correction table from simulated data")
    sim.add_argument("--seconds", type=int, default=600)
    sim.add_argument("--speed-kts", type=float, default=6.0)
    sim.add_argument("--heading-deg", type=float, default=45.0)
    sim.add_argument("--heel-deg", type=float, default=12.0)
    sim.add_argument("--current-kts", type=float, default=0.0)
    sim.add_argument("--current-dir-deg", type=float, default=0.0)
    sim.add_argument("--speed-bias", type=float, default=0.05)
    sim.add_argument("--leeway-per-heel", type=float, default=0.1)
    sim.add_argument("--seed", type=int, default=0)
    sim.add_argument("--input", help="Stored table to start from")
    sim.add_argument("--output", help="Where to write the learned table")
    sim.set_defaults(func=simulate)

    ins = sub.add_parser("inspect", help="Show the learned cells of a table")
    ins.add_argument("table")
    ins.set_defaults(func=inspect)

    res = sub.add_parser("resample", help="Resample a table onto a new geometry")
    res.add_argument("table")
    res.add_argument("--max-speed-kts", type=float, default=settings.max_speed_kts)
    res.add_argument("--speed-step-kts", type=float, default=settings.speed_step_kts)
    res.add_argument("--max-heel-deg", type=float, default=settings.max_heel_deg)
    res.add_argument("--heel-step-deg", type=float, default=settings.heel_step_deg)
    res.add_argument("--variance-floor", type=float, default=DEFAULT_VARIANCE_FLOOR)
    res.add_argument("--output", required=True)
    res.set_defaults(func=resample_table)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    settings.configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, json.JSONDecodeError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
