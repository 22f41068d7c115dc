"""Sample accumulation for controller screen points and head poses.

Two independent buffers feed the pose solve:

Controller pass
    For every tracker and mat location, up to ``N`` raw pixel locations of
    the controller bulb.  The N-th sample triggers the arithmetic mean,
    stored as that location's averaged point.

Head pass
    Up to ``N_head`` raw (position, orientation) readings of the head
    device resting at the calibration origin.  ``N_head`` defaults to the
    mat location count.  The orientation mean is the normalised
    component-wise quaternion sum, which is only a valid mean while all
    samples lie in the same rotational hemisphere (true for a device
    resting still).

Callers are responsible for filtering: samples are only appended while
the device is stable and tracked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from mat_calibration.calibration.target import MAT_LOCATION_COUNT
from src.utils.transforms import IDENTITY_QUAT, Pose, normalize_quat

logger = logging.getLogger(__name__)

DEFAULT_SAMPLES_PER_LOCATION = 10

Point2 = tuple[float, float]
Point3 = tuple[float, float, float]
Quat = tuple[float, float, float, float]


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass
class TrackerSampleSet:
    """Per-tracker screen-space samples and, after solving, its pose.

    Parameters
    ----------
    tracker_index : int
        Stable index of the tracker in the tracker collection.
    samples_per_location : int
        Cap ``N`` on raw samples at each mat location.
    """

    tracker_index: int
    samples_per_location: int
    location_count: int = MAT_LOCATION_COUNT
    screen_samples: list[list[Point2]] = field(default_factory=list)
    averaged_points: list[Point2 | None] = field(default_factory=list)

    valid: bool = False
    reprojection_error: float = 0.0
    tracker_pose: Pose | None = None
    head_relative_pose: Pose | None = None

    def __post_init__(self) -> None:
        if not self.screen_samples:
            self.screen_samples = [[] for _ in range(self.location_count)]
        if not self.averaged_points:
            self.averaged_points = [None] * self.location_count

    def sample_count(self, location_index: int) -> int:
        return len(self.screen_samples[location_index])

    def is_location_complete(self, location_index: int) -> bool:
        return self.averaged_points[location_index] is not None

    @property
    def completed_locations(self) -> int:
        return sum(1 for p in self.averaged_points if p is not None)

    def clear_location(self, location_index: int) -> None:
        self.screen_samples[location_index] = []
        self.averaged_points[location_index] = None

    def clear_solution(self) -> None:
        self.valid = False
        self.reprojection_error = 0.0
        self.tracker_pose = None
        self.head_relative_pose = None

    def clear(self) -> None:
        for i in range(self.location_count):
            self.clear_location(i)
        self.clear_solution()


@dataclass
class HeadSampleSet:
    """Head-device pose samples recorded at the calibration origin."""

    sample_target: int = MAT_LOCATION_COUNT
    positions: list[Point3] = field(default_factory=list)
    orientations: list[Quat] = field(default_factory=list)
    avg_position: Point3 | None = None
    avg_orientation: Quat | None = None

    @property
    def sample_count(self) -> int:
        return len(self.positions)

    @property
    def is_complete(self) -> bool:
        return self.avg_position is not None

    def average_pose(self) -> Pose | None:
        if self.avg_position is None or self.avg_orientation is None:
            return None
        return Pose(position=self.avg_position, orientation=self.avg_orientation)

    def clear(self) -> None:
        self.positions = []
        self.orientations = []
        self.avg_position = None
        self.avg_orientation = None


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------


class SampleAccumulator:
    """Owns every tracker sample set plus the single head sample set.

    Parameters
    ----------
    tracker_count : int
        Number of trackers; sample sets are keyed ``0..tracker_count-1``.
    samples_per_location : int
        Cap ``N`` on raw controller samples per (tracker, location).
    head_sample_count : int | None
        Cap on head samples.  ``None`` uses the mat location count.
    """

    def __init__(
        self,
        tracker_count: int,
        samples_per_location: int = DEFAULT_SAMPLES_PER_LOCATION,
        head_sample_count: int | None = None,
        location_count: int = MAT_LOCATION_COUNT,
    ) -> None:
        if tracker_count < 0:
            raise ValueError(f"tracker_count must be >= 0, got {tracker_count}")
        if samples_per_location < 1:
            raise ValueError(
                f"samples_per_location must be >= 1, got {samples_per_location}"
            )
        if head_sample_count is None:
            head_sample_count = location_count
        if head_sample_count < 1:
            raise ValueError(
                f"head_sample_count must be >= 1, got {head_sample_count}"
            )

        self.samples_per_location = samples_per_location
        self.location_count = location_count
        self.trackers: dict[int, TrackerSampleSet] = {
            i: TrackerSampleSet(
                tracker_index=i,
                samples_per_location=samples_per_location,
                location_count=location_count,
            )
            for i in range(tracker_count)
        }
        self.head = HeadSampleSet(sample_target=head_sample_count)

    # ------------------------------------------------------------------
    # Controller (2D) sampling
    # ------------------------------------------------------------------

    def tracker(self, tracker_index: int) -> TrackerSampleSet:
        try:
            return self.trackers[tracker_index]
        except KeyError:
            raise IndexError(f"Unknown tracker index {tracker_index}") from None

    def _check_location(self, location_index: int) -> None:
        if not 0 <= location_index < self.location_count:
            raise IndexError(
                f"location_index must be in [0, {self.location_count}), "
                f"got {location_index}"
            )

    def add_screen_sample(
        self,
        tracker_index: int,
        location_index: int,
        point: Point2,
    ) -> bool:
        """Append one pixel observation for a tracker at a mat location.

        Returns
        -------
        bool
            ``True`` if the sample was stored, ``False`` if the buffer
            was already full (no-op).
        """
        self._check_location(location_index)
        ts = self.tracker(tracker_index)
        buf = ts.screen_samples[location_index]
        if len(buf) >= self.samples_per_location:
            return False

        buf.append((float(point[0]), float(point[1])))

        if len(buf) >= self.samples_per_location:
            avg = np.mean(np.asarray(buf, dtype=np.float64), axis=0)
            ts.averaged_points[location_index] = (float(avg[0]), float(avg[1]))
            logger.debug(
                "Tracker %d location %d averaged at (%.2f, %.2f)",
                tracker_index, location_index, avg[0], avg[1],
            )
        return True

    def screen_sample_count(self, tracker_index: int, location_index: int) -> int:
        self._check_location(location_index)
        return self.tracker(tracker_index).sample_count(location_index)

    def location_complete(self, tracker_index: int, location_index: int) -> bool:
        self._check_location(location_index)
        return self.tracker(tracker_index).is_location_complete(location_index)

    def all_trackers_complete(self, location_index: int) -> bool:
        """``True`` when every tracker has filled ``location_index``."""
        self._check_location(location_index)
        return all(
            ts.is_location_complete(location_index)
            for ts in self.trackers.values()
        )

    def averaged_points(self, tracker_index: int) -> list[Point2]:
        """All averaged points for a tracker, in location order.

        Raises
        ------
        ValueError
            If any location has not been averaged yet.
        """
        ts = self.tracker(tracker_index)
        missing = [i for i, p in enumerate(ts.averaged_points) if p is None]
        if missing:
            raise ValueError(
                f"Tracker {tracker_index} missing averaged points for "
                f"locations {missing}"
            )
        return [p for p in ts.averaged_points if p is not None]

    # ------------------------------------------------------------------
    # Head (3D) sampling
    # ------------------------------------------------------------------

    def add_head_sample(self, position: Point3, orientation: Quat) -> bool:
        """Append one head pose reading.  Returns ``False`` once full."""
        head = self.head
        if head.sample_count >= head.sample_target:
            return False

        head.positions.append(tuple(float(v) for v in position))
        head.orientations.append(tuple(float(v) for v in orientation))

        if head.sample_count >= head.sample_target:
            pos = np.mean(np.asarray(head.positions, dtype=np.float64), axis=0)
            quat_sum = np.sum(np.asarray(head.orientations, dtype=np.float64), axis=0)
            head.avg_position = (float(pos[0]), float(pos[1]), float(pos[2]))
            head.avg_orientation = normalize_quat(quat_sum, default=IDENTITY_QUAT)
            logger.debug(
                "Head average position (%.2f, %.2f, %.2f)", pos[0], pos[1], pos[2],
            )
        return True

    @property
    def head_complete(self) -> bool:
        return self.head.is_complete

    def head_average(self) -> Pose | None:
        return self.head.average_pose()

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset_location(
        self,
        location_index: int,
        tracker_index: int | None = None,
    ) -> None:
        """Discard samples at one location for one or all trackers."""
        self._check_location(location_index)
        targets = (
            [self.tracker(tracker_index)]
            if tracker_index is not None
            else self.trackers.values()
        )
        for ts in targets:
            ts.clear_location(location_index)

    def reset_trackers(self, tracker_index: int | None = None) -> None:
        """Clear every location (and any solution) for one or all trackers."""
        if tracker_index is not None:
            self.tracker(tracker_index).clear()
            return
        for ts in self.trackers.values():
            ts.clear()

    def reset_head(self) -> None:
        self.head.clear()

    def reset_all(self) -> None:
        self.reset_trackers()
        self.reset_head()
