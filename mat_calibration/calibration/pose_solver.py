"""Tracker extrinsic pose from mat correspondences.

For one tracker, the five known mat locations (3D, calibration space) and
the averaged controller pixel locations (2D) form a perspective-n-point
problem.  The solved camera pose is then re-expressed in head camera
space using the composed controller-to-head transform.

Conventions
-----------
- Observed pixels arrive with +Y up; the solver expects +Y down, so every
  image point is flipped as ``height - y`` before solving.
- Lens distortion is not modelled: a zero 4-coefficient vector is passed.
- Re-projection error is the **mean** squared pixel distance over all
  correspondences; the max is kept alongside for diagnostics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import cv2
import numpy as np

from mat_calibration.devices.interfaces import PerspectivePoseSolver, TrackerView
from src.utils.transforms import (
    Pose,
    invert_transform,
    matrix_to_pose,
    rt_to_matrix,
)

logger = logging.getLogger(__name__)

SOLVER_METHODS: dict[str, int] = {
    "iterative": cv2.SOLVEPNP_ITERATIVE,
    "epnp": cv2.SOLVEPNP_EPNP,
    "sqpnp": cv2.SOLVEPNP_SQPNP,
}

# Smallest singular value (px) of the centred image points below which the
# correspondences are treated as collinear / coincident
DEFAULT_MIN_POINT_SPREAD_PX = 1.0


# ---------------------------------------------------------------------------
# OpenCV backend
# ---------------------------------------------------------------------------


class OpenCvPoseSolver(PerspectivePoseSolver):
    """``cv2.solvePnP`` / ``cv2.projectPoints`` backend.

    Parameters
    ----------
    method : str
        One of ``SOLVER_METHODS``.
    """

    def __init__(self, method: str = "iterative") -> None:
        if method not in SOLVER_METHODS:
            raise ValueError(
                f"Unknown PnP method {method!r}; "
                f"choose from {sorted(SOLVER_METHODS)}"
            )
        self.method = method
        self._flags = SOLVER_METHODS[method]

    def solve(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        camera_matrix: np.ndarray,
        dist_coeffs: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray] | None:
        try:
            ok, rvec, tvec = cv2.solvePnP(
                np.ascontiguousarray(object_points, dtype=np.float64),
                np.ascontiguousarray(image_points, dtype=np.float64),
                np.asarray(camera_matrix, dtype=np.float64),
                np.asarray(dist_coeffs, dtype=np.float64),
                flags=self._flags,
            )
        except cv2.error as exc:
            logger.warning("solvePnP (%s) raised: %s", self.method, exc)
            return None
        if not ok:
            return None
        return rvec.reshape(3), tvec.reshape(3)

    def reproject(
        self,
        object_points: np.ndarray,
        rvec: np.ndarray,
        tvec: np.ndarray,
        camera_matrix: np.ndarray,
        dist_coeffs: np.ndarray,
    ) -> np.ndarray:
        projected, _ = cv2.projectPoints(
            np.ascontiguousarray(object_points, dtype=np.float64),
            np.asarray(rvec, dtype=np.float64).reshape(3, 1),
            np.asarray(tvec, dtype=np.float64).reshape(3, 1),
            np.asarray(camera_matrix, dtype=np.float64),
            np.asarray(dist_coeffs, dtype=np.float64),
        )
        return projected.reshape(-1, 2)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrackerPoseResult:
    """Outcome of one tracker's pose solve.

    Parameters
    ----------
    tracker_index : int
        Stable collection index.
    tracker_id : int
        Device identifier used when reporting.
    valid : bool
        ``True`` if the solver found a pose.
    reprojection_error : float
        Mean squared pixel error over all correspondences (``inf`` when
        invalid).
    max_reprojection_error : float
        Largest single squared pixel error (``inf`` when invalid).
    tracker_pose : Pose | None
        Tracker (camera) pose in controller tracking space.
    head_relative_pose : Pose | None
        Tracker pose in head camera space.
    """

    tracker_index: int
    tracker_id: int
    valid: bool
    reprojection_error: float = float("inf")
    max_reprojection_error: float = float("inf")
    tracker_pose: Pose | None = None
    head_relative_pose: Pose | None = None

    @classmethod
    def failed(cls, tracker_index: int, tracker_id: int) -> TrackerPoseResult:
        return cls(tracker_index=tracker_index, tracker_id=tracker_id, valid=False)


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


def flip_image_points(points: Sequence[tuple[float, float]], height: float) -> np.ndarray:
    """Convert +Y-up pixel points to the solver's +Y-down convention."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2).copy()
    pts[:, 1] = height - pts[:, 1]
    return pts


def point_spread(image_points: np.ndarray) -> float:
    """Smallest singular value of the centred point cloud (px).

    Zero for coincident or perfectly collinear points.
    """
    centred = image_points - image_points.mean(axis=0)
    return float(np.linalg.svd(centred, compute_uv=False)[-1])


class TrackerPoseSolver:
    """Recovers a tracker's extrinsic pose from averaged mat observations.

    Parameters
    ----------
    solver : PerspectivePoseSolver | None
        PnP backend; defaults to :class:`OpenCvPoseSolver`.
    min_point_spread_px : float
        Degeneracy threshold, see :func:`point_spread`.
    """

    def __init__(
        self,
        solver: PerspectivePoseSolver | None = None,
        min_point_spread_px: float = DEFAULT_MIN_POINT_SPREAD_PX,
    ) -> None:
        self.solver = solver or OpenCvPoseSolver()
        self.min_point_spread_px = min_point_spread_px

    def solve(
        self,
        tracker: TrackerView,
        tracker_index: int,
        object_points: np.ndarray,
        averaged_points: Sequence[tuple[float, float] | None],
        controller_to_head_camera: np.ndarray | None = None,
    ) -> TrackerPoseResult:
        """Solve one tracker's pose.

        Parameters
        ----------
        tracker : TrackerView
            Supplies pixel extents and the intrinsic matrix.
        tracker_index : int
            Stable collection index (echoed into the result).
        object_points : np.ndarray
            ``(N, 3)`` mat locations in calibration space.
        averaged_points : Sequence[tuple[float, float] | None]
            One averaged pixel point per mat location, +Y up.
        controller_to_head_camera : np.ndarray | None
            4x4 transform from :mod:`frames`; identity when ``None``.

        Returns
        -------
        TrackerPoseResult
            ``valid=False`` on missing samples, degenerate geometry or
            solver failure.  Never raises for bad observations.
        """
        tracker_id = tracker.tracker_id
        obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)

        if len(averaged_points) != len(obj) or any(p is None for p in averaged_points):
            logger.error(
                "Tracker %d: need %d averaged points, have %s",
                tracker_index, len(obj), averaged_points,
            )
            return TrackerPoseResult.failed(tracker_index, tracker_id)

        _, height = tracker.pixel_extents()
        img = flip_image_points(averaged_points, height)
        K = np.asarray(tracker.intrinsic_matrix(), dtype=np.float64).reshape(3, 3)

        if not np.all(np.isfinite(img)):
            logger.error("Tracker %d: non-finite averaged points %s", tracker_index, img.tolist())
            return TrackerPoseResult.failed(tracker_index, tracker_id)

        spread = point_spread(img)
        if spread < self.min_point_spread_px:
            logger.warning(
                "Tracker %d: image points degenerate (spread %.3f px < %.3f px)",
                tracker_index, spread, self.min_point_spread_px,
            )
            return TrackerPoseResult.failed(tracker_index, tracker_id)

        solution = self.solver.solve(obj, img, K, np.zeros((4, 1)))
        if solution is None:
            logger.warning("Tracker %d: no PnP solution", tracker_index)
            return TrackerPoseResult.failed(tracker_index, tracker_id)
        rvec, tvec = solution
        if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            logger.warning("Tracker %d: PnP returned non-finite pose", tracker_index)
            return TrackerPoseResult.failed(tracker_index, tracker_id)

        projected = self.solver.reproject(obj, rvec, tvec, K, np.zeros((4, 1)))
        sq_err = np.sum((img - projected) ** 2, axis=1)

        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        world_to_camera = rt_to_matrix(R, np.asarray(tvec).reshape(3))
        tracker_xform = invert_transform(world_to_camera)

        if controller_to_head_camera is None:
            controller_to_head_camera = np.eye(4)
        head_relative = np.asarray(controller_to_head_camera, dtype=np.float64) @ tracker_xform

        result = TrackerPoseResult(
            tracker_index=tracker_index,
            tracker_id=tracker_id,
            valid=True,
            reprojection_error=float(np.mean(sq_err)),
            max_reprojection_error=float(np.max(sq_err)),
            tracker_pose=matrix_to_pose(tracker_xform),
            head_relative_pose=matrix_to_pose(head_relative),
        )
        logger.info(
            "Tracker %d solved: position %s, mean sq. reprojection error %.4f px^2",
            tracker_index,
            tuple(round(v, 2) for v in result.tracker_pose.position),
            result.reprojection_error,
        )
        return result
