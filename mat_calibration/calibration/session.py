"""Mat calibration session state machine.

Sequences the operator through the procedure, one step per ``tick()``
(typically once per rendered frame)::

    INITIAL -> PLACE_CONTROLLER -> RECORD_CONTROLLER --(x5 locations)-->
        PLACE_HEAD -> RECORD_HEAD -> COMPUTE_POSES -> SUCCESS | FAILED

Without a head device the head steps are skipped
(``RECORD_CONTROLLER -> COMPUTE_POSES``) and the head-relative poses
degenerate to the controller tracking poses.

Recovery rules:
    - Controller moved before every tracker filled the current location:
      back to PLACE_CONTROLLER, that location's partial samples dropped,
      earlier locations kept.
    - Head moved before its buffer filled: back to PLACE_HEAD with an
      empty head buffer.
    - Any tracker solve failing: FAILED, nothing reported.  Only
      ``restart()`` leaves SUCCESS / FAILED.

Nothing here blocks or raises across ``tick()``; COMPUTE_POSES runs the
full solve synchronously inside a single tick.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Callable

import numpy as np

from mat_calibration.calibration.frames import CoordinateFrameComposer
from mat_calibration.calibration.pose_solver import (
    OpenCvPoseSolver,
    TrackerPoseResult,
    TrackerPoseSolver,
)
from mat_calibration.calibration.samples import (
    DEFAULT_SAMPLES_PER_LOCATION,
    SampleAccumulator,
)
from mat_calibration.calibration.stability import DEFAULT_DWELL_MS, StabilityDetector
from mat_calibration.calibration.target import DEFAULT_TARGET, CalibrationTarget
from mat_calibration.devices.interfaces import (
    ControllerStatus,
    HeadDeviceStatus,
    PoseSink,
    TrackerCollection,
)
from src.utils.logging_config import log_context
from src.utils.transforms import Pose

if TYPE_CHECKING:
    from mat_calibration.configs.loader import CalibrationConfig

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    """Default session clock in milliseconds."""
    return time.monotonic() * 1000.0


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class CalibrationStep(Enum):
    """Current step of the calibration procedure."""

    INITIAL = auto()
    PLACE_CONTROLLER = auto()
    RECORD_CONTROLLER = auto()
    PLACE_HEAD = auto()
    RECORD_HEAD = auto()
    COMPUTE_POSES = auto()
    SUCCESS = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (CalibrationStep.SUCCESS, CalibrationStep.FAILED)


@dataclass(frozen=True)
class TrackerProgress:
    """Sample progress of one tracker at the current location."""

    tracker_index: int
    tracker_id: int
    sample_count: int
    sample_target: int

    @property
    def complete(self) -> bool:
        return self.sample_count >= self.sample_target


@dataclass(frozen=True)
class SessionStatus:
    """Snapshot for presentation layers to poll and render."""

    step: CalibrationStep
    location_index: int
    location_count: int
    location_label: str
    is_stable: bool
    stable_duration_ms: float
    dwell_ms: float
    dwell_progress: float
    trackers: tuple[TrackerProgress, ...]
    has_head: bool
    head_sample_count: int
    head_sample_target: int
    instruction: str

    @property
    def location_sampling_complete(self) -> bool:
        return all(t.complete for t in self.trackers)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class CalibrationSessionController:
    """Drives one mat calibration session.

    Parameters
    ----------
    controller : ControllerStatus
        Handheld controller placed on the mat.
    trackers : TrackerCollection
        Trackers to calibrate, indexed 0..count-1.
    pose_sink : PoseSink
        Receives every tracker's poses on success.
    head : HeadDeviceStatus | None
        Head reference device; ``None`` skips the head steps.
    target : CalibrationTarget
        Mat geometry.
    dwell_ms : float
        Stability dwell before a placement is accepted.
    samples_per_location : int
        Pixel samples averaged per (tracker, location).
    head_sample_count : int | None
        Head pose samples averaged; ``None`` uses the location count.
    calibration_offset : Pose | None
        Mat pose in controller tracking space (identity when ``None``).
    pose_solver : TrackerPoseSolver | None
        Per-tracker solver; defaults to the OpenCV backend.
    clock : Callable[[], float] | None
        Millisecond clock used when ``tick()`` gets no timestamp.
    """

    def __init__(
        self,
        controller: ControllerStatus,
        trackers: TrackerCollection,
        pose_sink: PoseSink,
        head: HeadDeviceStatus | None = None,
        *,
        target: CalibrationTarget = DEFAULT_TARGET,
        dwell_ms: float = DEFAULT_DWELL_MS,
        samples_per_location: int = DEFAULT_SAMPLES_PER_LOCATION,
        head_sample_count: int | None = None,
        calibration_offset: Pose | None = None,
        pose_solver: TrackerPoseSolver | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._controller = controller
        self._trackers = trackers
        self._sink = pose_sink
        self._head = head
        self._target = target
        self._clock = clock or monotonic_ms

        self._samples_per_location = samples_per_location
        self._head_sample_count = (
            head_sample_count if head_sample_count is not None else len(target)
        )
        self._stability = StabilityDetector(dwell_ms)
        self._samples = self._new_accumulator()
        self._composer = CoordinateFrameComposer(calibration_offset)
        self._pose_solver = pose_solver or TrackerPoseSolver(OpenCvPoseSolver())

        self._step = CalibrationStep.INITIAL
        self._location_index = 0
        self._results: list[TrackerPoseResult] = []

        self._handlers: dict[CalibrationStep, Callable[[float], None]] = {
            CalibrationStep.INITIAL: self._tick_initial,
            CalibrationStep.PLACE_CONTROLLER: self._tick_place_controller,
            CalibrationStep.RECORD_CONTROLLER: self._tick_record_controller,
            CalibrationStep.PLACE_HEAD: self._tick_place_head,
            CalibrationStep.RECORD_HEAD: self._tick_record_head,
            CalibrationStep.COMPUTE_POSES: self._tick_compute_poses,
            CalibrationStep.SUCCESS: self._tick_terminal,
            CalibrationStep.FAILED: self._tick_terminal,
        }

    @classmethod
    def from_config(
        cls,
        config: CalibrationConfig,
        controller: ControllerStatus,
        trackers: TrackerCollection,
        pose_sink: PoseSink,
        head: HeadDeviceStatus | None = None,
        clock: Callable[[], float] | None = None,
    ) -> CalibrationSessionController:
        """Build a session from a loaded :class:`CalibrationConfig`."""
        return cls(
            controller,
            trackers,
            pose_sink,
            head,
            target=config.target(),
            dwell_ms=config.session.dwell_ms,
            samples_per_location=config.session.samples_per_location,
            head_sample_count=config.session.head_sample_count,
            calibration_offset=config.mat.calibration_offset,
            pose_solver=TrackerPoseSolver(
                OpenCvPoseSolver(config.solver.method),
                min_point_spread_px=config.solver.min_point_spread_px,
            ),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def step(self) -> CalibrationStep:
        return self._step

    @property
    def location_index(self) -> int:
        return self._location_index

    @property
    def is_stable(self) -> bool:
        return self._stability.is_stable

    @property
    def target(self) -> CalibrationTarget:
        return self._target

    @property
    def samples(self) -> SampleAccumulator:
        return self._samples

    @property
    def has_head(self) -> bool:
        return self._head is not None

    @property
    def results(self) -> list[TrackerPoseResult]:
        """Per-tracker results of the last COMPUTE_POSES step."""
        return list(self._results)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def enter(self) -> None:
        """Start a fresh session at PLACE_CONTROLLER."""
        self.restart()
        self._set_step(CalibrationStep.PLACE_CONTROLLER)

    def exit(self) -> None:
        self._set_step(CalibrationStep.INITIAL)

    def restart(self) -> None:
        """Return to INITIAL and clear all session state, from any step."""
        if self._step is CalibrationStep.INITIAL:
            self._reset_session()
        else:
            self._set_step(CalibrationStep.INITIAL)

    def tick(self, now: float | None = None) -> CalibrationStep:
        """Advance the state machine by one step.

        Parameters
        ----------
        now : float | None
            Timestamp in milliseconds; the session clock when ``None``.

        Returns
        -------
        CalibrationStep
            Step after this tick.
        """
        if now is None:
            now = self._clock()
        with log_context(step=self._step.name):
            self._handlers[self._step](now)
        return self._step

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_step(self, new_step: CalibrationStep) -> None:
        if new_step is self._step:
            return
        old_step = self._step
        logger.info("Calibration step %s -> %s", old_step.name, new_step.name)
        self._step = new_step
        self._on_enter(new_step, old_step)

    def _on_enter(self, new_step: CalibrationStep, old_step: CalibrationStep) -> None:
        if new_step is CalibrationStep.INITIAL:
            self._reset_session()
        elif new_step is CalibrationStep.PLACE_CONTROLLER:
            if old_step is CalibrationStep.INITIAL:
                self._reset_session()
            else:
                self._stability.reset()
                self._samples.reset_location(self._location_index)
        elif new_step is CalibrationStep.PLACE_HEAD:
            self._stability.reset()
            self._samples.reset_head()

    def _new_accumulator(self) -> SampleAccumulator:
        return SampleAccumulator(
            tracker_count=self._trackers.tracker_count(),
            samples_per_location=self._samples_per_location,
            head_sample_count=self._head_sample_count,
            location_count=len(self._target),
        )

    def _tracked_count(self) -> int:
        """Trackers covered by both the accumulator and the live collection.

        The accumulator is sized on a full reset; a collection that grows or
        shrinks mid-session is picked up on the next restart.
        """
        return min(len(self._samples.trackers), self._trackers.tracker_count())

    def _reset_session(self) -> None:
        if len(self._samples.trackers) != self._trackers.tracker_count():
            self._samples = self._new_accumulator()
        else:
            self._samples.reset_all()
        self._location_index = 0
        self._stability.reset()
        self._results = []

    # ------------------------------------------------------------------
    # Per-step tick handlers
    # ------------------------------------------------------------------

    def _tick_initial(self, now: float) -> None:
        self._set_step(CalibrationStep.PLACE_CONTROLLER)

    def _tick_place_controller(self, now: float) -> None:
        stable = self._controller.is_stable_and_gravity_aligned()
        if self._stability.observe(stable, now):
            self._set_step(CalibrationStep.RECORD_CONTROLLER)

    def _tick_record_controller(self, now: float) -> None:
        stable = self._controller.is_stable_and_gravity_aligned()
        loc = self._location_index

        if not self._samples.all_trackers_complete(loc):
            if not stable:
                logger.info(
                    "Controller moved while sampling location #%d (%s); "
                    "discarding partial samples",
                    loc + 1, self._target.label(loc),
                )
                self._set_step(CalibrationStep.PLACE_CONTROLLER)
                return
            self._record_screen_samples(loc)
            return

        # Location done: wait for the controller to be picked up
        if stable:
            return
        if loc + 1 < len(self._target):
            self._location_index = loc + 1
            self._set_step(CalibrationStep.PLACE_CONTROLLER)
        elif self._head is not None:
            self._set_step(CalibrationStep.PLACE_HEAD)
        else:
            self._set_step(CalibrationStep.COMPUTE_POSES)

    def _record_screen_samples(self, loc: int) -> None:
        if not self._controller.is_currently_tracked():
            return
        for index in range(self._tracked_count()):
            if self._samples.location_complete(index, loc):
                continue
            tracker = self._trackers.get_tracker(index)
            pixel = self._controller.pixel_location_on_tracker(tracker.tracker_id)
            if pixel is None:
                continue
            if not np.all(np.isfinite(pixel)):
                logger.warning("Tracker %d: dropping non-finite pixel %s", index, pixel)
                continue
            self._samples.add_screen_sample(index, loc, pixel)
            if self._samples.location_complete(index, loc):
                logger.info(
                    "Tracker %d finished location #%d (%s)",
                    index, loc + 1, self._target.label(loc),
                )

    def _tick_place_head(self, now: float) -> None:
        stable = self._head.is_stable_and_gravity_aligned()
        if self._stability.observe(stable, now):
            self._set_step(CalibrationStep.RECORD_HEAD)

    def _tick_record_head(self, now: float) -> None:
        head = self._head
        if not head.is_stable_and_gravity_aligned():
            logger.info("Head device moved while sampling; restarting head placement")
            self._set_step(CalibrationStep.PLACE_HEAD)
            return

        if not head.is_tracking() or self._samples.head_complete:
            return

        pose = head.current_pose()
        self._samples.add_head_sample(pose.position, pose.orientation)
        logger.debug(
            "Head sample %d/%d",
            self._samples.head.sample_count, self._samples.head.sample_target,
        )
        if self._samples.head_complete:
            self._set_step(CalibrationStep.COMPUTE_POSES)

    def _tick_compute_poses(self, now: float) -> None:
        self._results = []
        tracker_count = self._trackers.tracker_count()
        if tracker_count == 0:
            logger.error("No trackers to calibrate")
            self._set_step(CalibrationStep.FAILED)
            return
        if tracker_count != len(self._samples.trackers):
            logger.error(
                "Tracker collection changed size mid-session (%d sampled, %d now); "
                "restart to recalibrate",
                len(self._samples.trackers), tracker_count,
            )
            self._set_step(CalibrationStep.FAILED)
            return

        transform = np.eye(4)
        if self._head is not None:
            head_average = self._samples.head_average()
            if head_average is None:
                logger.error("Head samples incomplete; cannot compose head frame")
                self._set_step(CalibrationStep.FAILED)
                return
            transform = self._composer.compose(
                self._head.camera_to_tracking_pose(), head_average,
            )

        object_points = self._target.object_points()
        results: list[TrackerPoseResult] = []
        for index in range(tracker_count):
            tracker = self._trackers.get_tracker(index)
            sample_set = self._samples.tracker(index)
            with log_context(tracker=tracker.tracker_id):
                result = self._pose_solver.solve(
                    tracker, index, object_points, sample_set.averaged_points, transform,
                )
            sample_set.valid = result.valid
            sample_set.reprojection_error = result.reprojection_error
            sample_set.tracker_pose = result.tracker_pose
            sample_set.head_relative_pose = result.head_relative_pose
            results.append(result)
            if not result.valid:
                break

        self._results = results
        if not all(r.valid for r in results):
            failed = [r.tracker_index for r in results if not r.valid]
            logger.error("Pose solve failed for tracker(s) %s", failed)
            self._set_step(CalibrationStep.FAILED)
            return

        try:
            for result in results:
                self._sink.report_tracker_pose(
                    result.tracker_id, result.tracker_pose, result.head_relative_pose,
                )
        except Exception:  # noqa: BLE001
            logger.exception("Pose sink rejected calibrated tracker poses")
            self._set_step(CalibrationStep.FAILED)
            return

        self._set_step(CalibrationStep.SUCCESS)

    def _tick_terminal(self, now: float) -> None:
        pass

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, now: float | None = None) -> SessionStatus:
        """Snapshot of the session for presentation layers."""
        if now is None:
            now = self._clock()
        loc = self._location_index
        trackers = tuple(
            TrackerProgress(
                tracker_index=index,
                tracker_id=self._trackers.get_tracker(index).tracker_id,
                sample_count=self._samples.screen_sample_count(index, loc),
                sample_target=self._samples_per_location,
            )
            for index in range(self._tracked_count())
        )
        head = self._samples.head
        return SessionStatus(
            step=self._step,
            location_index=loc,
            location_count=len(self._target),
            location_label=self._target.label(loc),
            is_stable=self._stability.is_stable,
            stable_duration_ms=self._stability.stable_duration_ms(now),
            dwell_ms=self._stability.dwell_ms,
            dwell_progress=self._stability.progress(now),
            trackers=trackers,
            has_head=self._head is not None,
            head_sample_count=head.sample_count,
            head_sample_target=head.sample_target,
            instruction=self._instruction(trackers),
        )

    def _instruction(self, trackers: tuple[TrackerProgress, ...]) -> str:
        loc = self._location_index
        where = f"location #{loc + 1} ({self._target.label(loc)})"
        step = self._step
        if step is CalibrationStep.PLACE_CONTROLLER:
            return f"Stand the controller upright on {where}"
        if step is CalibrationStep.RECORD_CONTROLLER:
            if all(t.complete for t in trackers):
                return "Location sampling complete. Please pick up the controller."
            return f"Recording controller samples at {where}"
        if step is CalibrationStep.PLACE_HEAD:
            return "Set the HMD at the tracking origin"
        if step is CalibrationStep.RECORD_HEAD:
            head = self._samples.head
            return f"Recording HMD sample {head.sample_count}/{head.sample_target}"
        if step is CalibrationStep.COMPUTE_POSES:
            return "Computing tracker poses"
        if step is CalibrationStep.SUCCESS:
            return "Calibration complete"
        if step is CalibrationStep.FAILED:
            return "Calibration failed. Restart to try again."
        return "Starting calibration"
