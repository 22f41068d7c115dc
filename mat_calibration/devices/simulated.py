"""Simulated devices for tests and offline runs.

Stand-ins for the hosting application's device views:

- :class:`SimulatedTracker` -- pinhole camera with a known extrinsic pose
- :class:`SimulatedController` -- controller that can be placed / lifted
- :class:`SimulatedHead` -- head device resting at the tracking origin
- :class:`TrackerList` -- plain list-backed tracker collection
- :class:`RecordingPoseSink` / :class:`YamlPoseSink` -- result outputs
- :class:`SimulatedOperator` -- scripted operator that walks a session
  through every step by moving the simulated devices

Pixels are reported the way the tracking pipeline delivers them: origin
at the bottom-left, +Y up.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

import cv2
import numpy as np

from mat_calibration.calibration.session import (
    CalibrationSessionController,
    CalibrationStep,
)
from mat_calibration.devices.interfaces import (
    ControllerStatus,
    HeadDeviceStatus,
    PoseSink,
    TrackerCollection,
    TrackerView,
)
from src.utils.fs import atomic_yaml_dump
from src.utils.transforms import (
    Pose,
    invert_transform,
    look_at,
    matrix_to_pose,
    transform_points,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = (640, 480)
DEFAULT_FOCAL_PX = 550.0


# ---------------------------------------------------------------------------
# Trackers
# ---------------------------------------------------------------------------


class SimulatedTracker(TrackerView):
    """Ideal pinhole tracker at a fixed pose in controller tracking space.

    Parameters
    ----------
    tracker_id : int
        Device identifier.
    camera_to_world : np.ndarray
        4x4 camera pose (OpenCV camera axes) in controller tracking space.
    image_size : tuple[int, int]
        ``(width, height)`` in pixels.
    focal_px : float
        Focal length in pixels; the principal point is the image centre.
    noise_px : float
        Std-dev of Gaussian pixel noise added to each observation.
    seed : int | None
        Seed for the noise generator.
    """

    def __init__(
        self,
        tracker_id: int,
        camera_to_world: np.ndarray,
        image_size: tuple[int, int] = DEFAULT_IMAGE_SIZE,
        focal_px: float = DEFAULT_FOCAL_PX,
        noise_px: float = 0.0,
        seed: int | None = None,
    ) -> None:
        self._tracker_id = tracker_id
        self.camera_to_world = np.asarray(camera_to_world, dtype=np.float64)
        self.width, self.height = image_size
        self.focal_px = focal_px
        self.noise_px = noise_px
        self._rng = np.random.default_rng(seed)

        world_to_camera = invert_transform(self.camera_to_world)
        self._rvec, _ = cv2.Rodrigues(world_to_camera[:3, :3])
        self._tvec = world_to_camera[:3, 3].reshape(3, 1)
        self._world_to_camera = world_to_camera

    @classmethod
    def looking_at(
        cls,
        tracker_id: int,
        eye: Sequence[float],
        target: Sequence[float] = (0.0, 0.0, 0.0),
        **kwargs,
    ) -> SimulatedTracker:
        """Tracker at ``eye`` aimed at ``target`` (world +Y up)."""
        return cls(tracker_id, look_at(eye, target), **kwargs)

    @property
    def tracker_id(self) -> int:
        return self._tracker_id

    @property
    def pose(self) -> Pose:
        """Ground-truth tracker pose in controller tracking space."""
        return matrix_to_pose(self.camera_to_world)

    def pixel_extents(self) -> tuple[float, float]:
        return (float(self.width), float(self.height))

    def intrinsic_matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.focal_px, 0.0, self.width / 2.0],
                [0.0, self.focal_px, self.height / 2.0],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def project(self, point: Sequence[float]) -> tuple[float, float] | None:
        """Pixel location (+Y up) of a world point, ``None`` if not visible."""
        p = np.asarray(point, dtype=np.float64).reshape(1, 3)
        depth = transform_points(self._world_to_camera, p)[0, 2]
        if depth <= 0.0:
            return None

        projected, _ = cv2.projectPoints(
            p, self._rvec, self._tvec, self.intrinsic_matrix(), np.zeros(4),
        )
        u, v = projected.reshape(2)
        if self.noise_px > 0.0:
            u, v = np.array([u, v]) + self._rng.normal(0.0, self.noise_px, size=2)
        if not (0.0 <= u < self.width and 0.0 <= v < self.height):
            return None
        return (float(u), float(self.height - v))


class TrackerList(TrackerCollection):
    """List-backed tracker collection; list position is the stable index."""

    def __init__(self, trackers: Iterable[TrackerView] = ()) -> None:
        self._trackers = list(trackers)

    def tracker_count(self) -> int:
        return len(self._trackers)

    def get_tracker(self, index: int) -> TrackerView:
        return self._trackers[index]


# ---------------------------------------------------------------------------
# Controller and head
# ---------------------------------------------------------------------------


class SimulatedController(ControllerStatus):
    """Controller whose bulb is either resting at a point or in the hand.

    Parameters
    ----------
    trackers : Iterable[SimulatedTracker]
        Trackers that observe the bulb.
    """

    def __init__(self, trackers: Iterable[SimulatedTracker] = ()) -> None:
        self._trackers = {t.tracker_id: t for t in trackers}
        self.position: tuple[float, float, float] | None = None
        self.stable = False
        self.tracked = True

    def place(self, position: Sequence[float]) -> None:
        """Stand the controller upright with its bulb at ``position``."""
        self.position = tuple(float(v) for v in position)
        self.stable = True

    def lift(self) -> None:
        """Pick the controller up (unstable, bulb still visible)."""
        self.stable = False

    def is_stable_and_gravity_aligned(self) -> bool:
        return self.stable

    def is_currently_tracked(self) -> bool:
        if not self.tracked or self.position is None:
            return False
        return any(t.project(self.position) is not None for t in self._trackers.values())

    def pixel_location_on_tracker(self, tracker_id: int) -> tuple[float, float] | None:
        tracker = self._trackers.get(tracker_id)
        if tracker is None or self.position is None or not self.tracked:
            return None
        return tracker.project(self.position)


class SimulatedHead(HeadDeviceStatus):
    """Head device that reports a fixed pose while resting.

    Parameters
    ----------
    pose : Pose | None
        Head pose in head tracking space while at the calibration origin.
    camera_to_tracking : Pose | None
        Head tracking camera pose in head tracking space.
    """

    def __init__(
        self,
        pose: Pose | None = None,
        camera_to_tracking: Pose | None = None,
    ) -> None:
        self.pose = pose or Pose.identity()
        self.camera_pose = camera_to_tracking or Pose.identity()
        self.stable = False
        self.tracking = True

    def rest(self) -> None:
        self.stable = True

    def lift(self) -> None:
        self.stable = False

    def is_stable_and_gravity_aligned(self) -> bool:
        return self.stable

    def is_tracking(self) -> bool:
        return self.tracking

    def current_pose(self) -> Pose:
        return self.pose

    def camera_to_tracking_pose(self) -> Pose:
        return self.camera_pose


# ---------------------------------------------------------------------------
# Pose sinks
# ---------------------------------------------------------------------------


class RecordingPoseSink(PoseSink):
    """Keeps every report in memory, in arrival order."""

    def __init__(self) -> None:
        self.reports: list[tuple[int, Pose, Pose]] = []

    def report_tracker_pose(self, tracker_id: int, pose: Pose, relative_pose: Pose) -> None:
        self.reports.append((tracker_id, pose, relative_pose))

    def poses(self) -> dict[int, tuple[Pose, Pose]]:
        return {tid: (pose, rel) for tid, pose, rel in self.reports}


class YamlPoseSink(PoseSink):
    """Persists calibrated tracker poses to a YAML file.

    The file is rewritten atomically after every report, so a reader never
    sees a partially written pose list.

    Layout::

        trackers:
          - tracker_id: 0
            pose: {position: [...], orientation: [w, x, y, z]}
            head_relative_pose: {position: [...], orientation: [...]}
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._entries: dict[int, dict] = {}

    def report_tracker_pose(self, tracker_id: int, pose: Pose, relative_pose: Pose) -> None:
        self._entries[tracker_id] = {
            "tracker_id": int(tracker_id),
            "pose": pose.as_dict(),
            "head_relative_pose": relative_pose.as_dict(),
        }
        atomic_yaml_dump(
            {"trackers": [self._entries[k] for k in sorted(self._entries)]},
            self.path,
        )
        logger.info("Wrote tracker %d pose to %s", tracker_id, self.path)


# ---------------------------------------------------------------------------
# Scripted operator
# ---------------------------------------------------------------------------


class SimulatedOperator:
    """Moves the simulated devices the way an operator following the
    on-screen instructions would.

    Parameters
    ----------
    controller : SimulatedController
        Controller to place on the mat.
    head : SimulatedHead | None
        Head device to rest at the origin (if the session has one).
    fumble_locations : Iterable[int]
        Location indices at which the operator bumps the controller once,
        right after the first recorded sample.
    """

    def __init__(
        self,
        controller: SimulatedController,
        head: SimulatedHead | None = None,
        fumble_locations: Iterable[int] = (),
    ) -> None:
        self.controller = controller
        self.head = head
        self._pending_fumbles = set(fumble_locations)

    def act(self, session: CalibrationSessionController) -> None:
        """Update device state for the session's current step."""
        step = session.step
        loc = session.location_index

        if step is CalibrationStep.PLACE_CONTROLLER:
            self.controller.place(session.target[loc].position)
        elif step is CalibrationStep.RECORD_CONTROLLER:
            samples = session.samples
            if samples.all_trackers_complete(loc):
                self.controller.lift()
            elif loc in self._pending_fumbles and any(
                samples.screen_sample_count(i, loc) > 0 for i in samples.trackers
            ):
                logger.info("Operator bumps the controller at location #%d", loc + 1)
                self._pending_fumbles.discard(loc)
                self.controller.lift()
        elif step in (CalibrationStep.PLACE_HEAD, CalibrationStep.RECORD_HEAD):
            self.controller.lift()
            if self.head is not None:
                self.head.rest()

    def run(
        self,
        session: CalibrationSessionController,
        max_ticks: int = 10_000,
        tick_ms: float = 16.0,
        start_ms: float = 0.0,
    ) -> CalibrationStep:
        """Tick ``session`` until it finishes or ``max_ticks`` elapse.

        Returns
        -------
        CalibrationStep
            Final step (not terminal if the tick budget ran out).
        """
        now = start_ms
        for _ in range(max_ticks):
            if session.step.is_terminal:
                break
            self.act(session)
            session.tick(now)
            now += tick_ms
        if not session.step.is_terminal:
            logger.warning(
                "Session still at %s after %d ticks", session.step.name, max_ticks,
            )
        return session.step
