"""Abstract device interfaces consumed by the calibration session.

These are the seams to the hosting application: the session never talks
to hardware or services directly.  It only reads already-decoded state
through these interfaces, once per tick.

Implementations:
    - ``devices.simulated``: synthetic devices for tests and the CLI
    - Host applications: adapters over their controller / HMD / tracker
      client views

Units: positions in centimetres, pixels in the tracker's native image
coordinates (origin at the bottom-left, +Y up, as delivered by the
tracking pipeline).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

import numpy as np

from src.utils.transforms import Pose


# ---------------------------------------------------------------------------
# Live device status
# ---------------------------------------------------------------------------


class ControllerStatus(ABC):
    """Handheld controller being placed on the mat."""

    @abstractmethod
    def is_stable_and_gravity_aligned(self) -> bool:
        """``True`` while the controller stands still and upright."""

    @abstractmethod
    def is_currently_tracked(self) -> bool:
        """``True`` while at least one tracker sees the controller."""

    @abstractmethod
    def pixel_location_on_tracker(self, tracker_id: int) -> tuple[float, float] | None:
        """Bulb pixel location on ``tracker_id``, ``None`` if not visible."""


class HeadDeviceStatus(ABC):
    """Head-mounted tracking reference device (optional)."""

    @abstractmethod
    def is_stable_and_gravity_aligned(self) -> bool:
        """``True`` while the head device rests still and level."""

    @abstractmethod
    def is_tracking(self) -> bool:
        """``True`` while the head device's own tracking is valid."""

    @abstractmethod
    def current_pose(self) -> Pose:
        """Head pose in head tracking space."""

    @abstractmethod
    def camera_to_tracking_pose(self) -> Pose:
        """Head tracking camera pose in head tracking space."""


# ---------------------------------------------------------------------------
# Trackers
# ---------------------------------------------------------------------------


class TrackerView(ABC):
    """One fixed optical tracker and its intrinsics."""

    @property
    @abstractmethod
    def tracker_id(self) -> int:
        """Identifier used for pixel lookups and pose reports."""

    @abstractmethod
    def pixel_extents(self) -> tuple[float, float]:
        """Image ``(width, height)`` in pixels."""

    @abstractmethod
    def intrinsic_matrix(self) -> np.ndarray:
        """3x3 camera matrix ``[[fx, 0, cx], [0, fy, cy], [0, 0, 1]]``."""


class TrackerCollection(ABC):
    """Externally owned collection of trackers, indexed 0..count-1.

    The index is the stable key the session uses for sample buffers; it
    is not necessarily equal to ``TrackerView.tracker_id``.
    """

    @abstractmethod
    def tracker_count(self) -> int:
        """Number of trackers taking part in calibration."""

    @abstractmethod
    def get_tracker(self, index: int) -> TrackerView:
        """Tracker at stable ``index``."""

    def __len__(self) -> int:
        return self.tracker_count()

    def __iter__(self) -> Iterator[TrackerView]:
        for i in range(self.tracker_count()):
            yield self.get_tracker(i)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


class PoseSink(ABC):
    """Receives calibrated tracker poses once a session succeeds."""

    @abstractmethod
    def report_tracker_pose(
        self,
        tracker_id: int,
        pose: Pose,
        relative_pose: Pose,
    ) -> None:
        """Persist ``pose`` (controller tracking space) and
        ``relative_pose`` (head camera space) for ``tracker_id``."""


# ---------------------------------------------------------------------------
# Perspective-n-point solver
# ---------------------------------------------------------------------------


class PerspectivePoseSolver(ABC):
    """Camera pose from 3D/2D point correspondences.

    ``rvec`` / ``tvec`` follow the usual convention: a world point ``X``
    maps to camera coordinates ``R(rvec) @ X + tvec``.
    """

    @abstractmethod
    def solve(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        camera_matrix: np.ndarray,
        dist_coeffs: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray] | None:
        """Return ``(rvec, tvec)`` or ``None`` when no pose is found."""

    @abstractmethod
    def reproject(
        self,
        object_points: np.ndarray,
        rvec: np.ndarray,
        tvec: np.ndarray,
        camera_matrix: np.ndarray,
        dist_coeffs: np.ndarray,
    ) -> np.ndarray:
        """Project ``object_points`` to an ``(N, 2)`` pixel array."""
