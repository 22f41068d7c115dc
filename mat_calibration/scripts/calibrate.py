#!/usr/bin/env python3
"""Mat calibration entry point -- runs a simulated session end to end.

Builds simulated trackers arranged around the mat, a scripted operator
and (unless ``--no-head``) a head device resting at the tracking origin,
then ticks the calibration session until it succeeds or fails.

Usage::

    python mat_calibration/scripts/calibrate.py                    # 2 trackers + head
    python mat_calibration/scripts/calibrate.py --trackers 4
    python mat_calibration/scripts/calibrate.py --no-head
    python mat_calibration/scripts/calibrate.py --noise-px 0.5 --seed 7
    python mat_calibration/scripts/calibrate.py --fumble 0 --fumble 3
    python mat_calibration/scripts/calibrate.py --output outputs/tracker_poses.yaml
"""

from __future__ import annotations

import argparse
import logging
import math
import sys
from pathlib import Path
from typing import Sequence

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from mat_calibration.calibration.pose_solver import TrackerPoseResult
from mat_calibration.calibration.session import (
    CalibrationSessionController,
    CalibrationStep,
)
from mat_calibration.configs.loader import CalibrationConfig, ConfigError, load_config
from mat_calibration.devices.interfaces import PoseSink
from mat_calibration.devices.simulated import (
    RecordingPoseSink,
    SimulatedController,
    SimulatedHead,
    SimulatedOperator,
    SimulatedTracker,
    TrackerList,
    YamlPoseSink,
)
from src.utils.logging_config import install_excepthook, setup_logging
from src.utils.transforms import Pose

logger = logging.getLogger(__name__)

# Simulated rig: trackers on a ring around the mat, aimed at its centre
TRACKER_RING_RADIUS_CM = 110.0
TRACKER_HEIGHT_CM = 60.0
HEAD_CAMERA_OFFSET = Pose(position=(0.0, 3.0, 8.0))


def build_trackers(
    count: int,
    aim_height_cm: float,
    noise_px: float = 0.0,
    seed: int | None = None,
) -> list[SimulatedTracker]:
    """Place ``count`` trackers evenly on a ring facing the mat centre.

    The first tracker sits on the -Z side of the mat; the rest follow
    counter-clockwise seen from above.
    """
    trackers = []
    for i in range(count):
        angle = -math.pi / 2.0 + 2.0 * math.pi * i / max(count, 1)
        eye = (
            TRACKER_RING_RADIUS_CM * math.cos(angle),
            TRACKER_HEIGHT_CM,
            TRACKER_RING_RADIUS_CM * math.sin(angle),
        )
        trackers.append(
            SimulatedTracker.looking_at(
                i, eye, (0.0, aim_height_cm, 0.0),
                noise_px=noise_px,
                seed=None if seed is None else seed + i,
            )
        )
    return trackers


def format_calibration_summary(
    step: CalibrationStep,
    results: Sequence[TrackerPoseResult],
) -> str:
    """Format session results as a human-readable summary.

    Parameters
    ----------
    step : CalibrationStep
        Final session step.
    results : Sequence[TrackerPoseResult]
        Per-tracker results from the pose solve.

    Returns
    -------
    str
        Multi-line formatted string.
    """
    lines = ["=" * 50, "  CALIBRATION RESULTS", "=" * 50]
    lines.append(f"  outcome: {step.name}")
    for r in results:
        if not r.valid:
            lines.append(f"  tracker {r.tracker_id}: FAILED")
            continue
        x, y, z = r.tracker_pose.position
        lines.append(f"  tracker {r.tracker_id}:")
        lines.append(f"    position_cm: ({x:.2f}, {y:.2f}, {z:.2f})")
        lines.append(
            "    orientation_wxyz: ("
            + ", ".join(f"{v:.4f}" for v in r.tracker_pose.orientation)
            + ")"
        )
        lines.append(f"    reprojection_error_px2: {r.reprojection_error:.4f}")
    lines.append("=" * 50)
    return "\n".join(lines)


def run_simulated_session(
    config: CalibrationConfig,
    tracker_count: int,
    use_head: bool = True,
    sink: PoseSink | None = None,
    noise_px: float = 0.0,
    seed: int | None = None,
    fumble_locations: Sequence[int] = (),
    max_ticks: int = 10_000,
    tick_ms: float = 16.0,
) -> CalibrationSessionController:
    """Build a simulated rig from ``config`` and run one session on it.

    Returns
    -------
    CalibrationSessionController
        The session, left in its final step.
    """
    target = config.target()
    trackers = build_trackers(
        tracker_count, target[0].position[1], noise_px=noise_px, seed=seed,
    )
    controller = SimulatedController(trackers)
    head = SimulatedHead(camera_to_tracking=HEAD_CAMERA_OFFSET) if use_head else None

    session = CalibrationSessionController.from_config(
        config,
        controller,
        TrackerList(trackers),
        sink or RecordingPoseSink(),
        head,
    )
    operator = SimulatedOperator(controller, head, fumble_locations=fumble_locations)

    session.enter()
    operator.run(session, max_ticks=max_ticks, tick_ms=tick_ms)
    return session


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Simulated mat calibration of optical trackers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Config file path")
    parser.add_argument("--trackers", "-t", type=int, default=2,
                        help="Number of simulated trackers (default: 2)")
    parser.add_argument("--no-head", action="store_true",
                        help="Run without a head device (skips head steps)")
    parser.add_argument("--output", "-o", type=str,
                        help="Write calibrated tracker poses to this YAML file")
    parser.add_argument("--noise-px", type=float, default=0.0,
                        help="Gaussian pixel noise std-dev (default: 0)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Noise seed")
    parser.add_argument("--fumble", type=int, action="append", default=[],
                        metavar="LOCATION",
                        help="Bump the controller once at this location index "
                        "(repeatable)")
    parser.add_argument("--max-ticks", type=int, default=10_000,
                        help="Tick budget before giving up (default: 10000)")
    parser.add_argument("--log-level", type=str, default=None,
                        help="Override the configured log level")
    parser.add_argument("--json-logs", action="store_true",
                        help="Emit JSON log lines")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        setup_logging("INFO")
        logger.error("Configuration error: %s", exc, exc_info=True)
        return 1

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        json=args.json_logs or config.logging.json,
        context={"app": "calibrate"},
    )
    install_excepthook()

    if args.trackers < 0:
        logger.error("--trackers must be >= 0, got %d", args.trackers)
        return 1

    sink: PoseSink = YamlPoseSink(args.output) if args.output else RecordingPoseSink()

    try:
        session = run_simulated_session(
            config,
            args.trackers,
            use_head=not args.no_head,
            sink=sink,
            noise_px=args.noise_px,
            seed=args.seed,
            fumble_locations=args.fumble,
            max_ticks=args.max_ticks,
        )
    except KeyboardInterrupt:
        print("\nCalibration interrupted by user.")
        return 1
    except Exception as exc:
        logger.error("Calibration error: %s", exc, exc_info=True)
        return 1

    print(format_calibration_summary(session.step, session.results))
    if session.step is not CalibrationStep.SUCCESS:
        return 1
    if args.output:
        print(f"Tracker poses written to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
