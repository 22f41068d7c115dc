"""Tests for per-tracker pose recovery from mat correspondences.

Synthetic observations come from :class:`SimulatedTracker`, which projects
the mat locations through an ideal pinhole at a known pose.
"""

from __future__ import annotations

import numpy as np
import pytest

from mat_calibration.calibration.pose_solver import (
    OpenCvPoseSolver,
    TrackerPoseResult,
    TrackerPoseSolver,
    flip_image_points,
    point_spread,
)
from mat_calibration.calibration.target import BULB_HEIGHT_CM, DEFAULT_TARGET
from mat_calibration.devices.interfaces import PerspectivePoseSolver
from mat_calibration.devices.simulated import SimulatedTracker
from src.utils.transforms import Pose, pose_to_matrix

EYE = (0.0, 60.0, -100.0)
AIM = (0.0, BULB_HEIGHT_CM, 0.0)


@pytest.fixture
def tracker() -> SimulatedTracker:
    return SimulatedTracker.looking_at(3, EYE, AIM)


@pytest.fixture
def observations(tracker: SimulatedTracker) -> list[tuple[float, float]]:
    points = [tracker.project(p) for p in DEFAULT_TARGET.object_points()]
    assert all(p is not None for p in points)
    return points


class _FixedSolver(PerspectivePoseSolver):
    """Returns a canned solution and canned re-projections."""

    def __init__(self, solution, projected=None) -> None:
        self.solution = solution
        self.projected = projected

    def solve(self, object_points, image_points, camera_matrix, dist_coeffs):
        return self.solution

    def reproject(self, object_points, rvec, tvec, camera_matrix, dist_coeffs):
        return self.projected


class _ScribblingSolver(PerspectivePoseSolver):
    """OpenCV backend that overwrites the distortion array it is handed."""

    def __init__(self) -> None:
        self.backend = OpenCvPoseSolver()
        self.seen: list[np.ndarray] = []

    def solve(self, object_points, image_points, camera_matrix, dist_coeffs):
        self.seen.append(np.array(dist_coeffs, copy=True))
        solution = self.backend.solve(object_points, image_points, camera_matrix, dist_coeffs)
        dist_coeffs[:] = 1.0
        return solution

    def reproject(self, object_points, rvec, tvec, camera_matrix, dist_coeffs):
        self.seen.append(np.array(dist_coeffs, copy=True))
        projected = self.backend.reproject(object_points, rvec, tvec, camera_matrix, dist_coeffs)
        dist_coeffs[:] = 1.0
        return projected


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_flip_image_points(self) -> None:
        flipped = flip_image_points([(10.0, 0.0), (20.0, 480.0), (5.0, 100.0)], 480.0)
        np.testing.assert_allclose(flipped, [[10.0, 480.0], [20.0, 0.0], [5.0, 380.0]])

    def test_point_spread_zero_for_collinear(self) -> None:
        pts = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [5.0, 5.0]])
        assert point_spread(pts) == pytest.approx(0.0, abs=1e-9)

    def test_point_spread_positive_for_spread_points(self) -> None:
        pts = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        assert point_spread(pts) > 1.0

    def test_unknown_method_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown PnP method"):
            OpenCvPoseSolver("dlt")

    def test_failed_result(self) -> None:
        r = TrackerPoseResult.failed(2, 9)
        assert (r.tracker_index, r.tracker_id, r.valid) == (2, 9, False)
        assert r.reprojection_error == float("inf")
        assert r.tracker_pose is None


# ---------------------------------------------------------------------------
# Synthetic recovery
# ---------------------------------------------------------------------------


class TestSyntheticRecovery:
    def test_recovers_known_pose(self, tracker, observations) -> None:
        result = TrackerPoseSolver().solve(
            tracker, 0, DEFAULT_TARGET.object_points(), observations,
        )
        assert result.valid
        assert result.tracker_id == 3
        assert result.tracker_index == 0
        assert result.reprojection_error == pytest.approx(0.0, abs=1e-6)
        assert result.max_reprojection_error >= result.reprojection_error

        assert result.tracker_pose.position == pytest.approx(EYE, abs=1e-3)
        np.testing.assert_allclose(
            pose_to_matrix(result.tracker_pose), tracker.camera_to_world, atol=1e-4,
        )

    def test_head_relative_defaults_to_tracker_pose(self, tracker, observations) -> None:
        result = TrackerPoseSolver().solve(
            tracker, 0, DEFAULT_TARGET.object_points(), observations,
        )
        np.testing.assert_allclose(
            pose_to_matrix(result.head_relative_pose),
            pose_to_matrix(result.tracker_pose),
            atol=1e-9,
        )

    def test_head_relative_applies_transform(self, tracker, observations) -> None:
        transform = pose_to_matrix(
            Pose(position=(1.0, -2.0, 30.0), orientation=(0.8, 0.0, 0.6, 0.0))
        )
        result = TrackerPoseSolver().solve(
            tracker, 0, DEFAULT_TARGET.object_points(), observations, transform,
        )
        np.testing.assert_allclose(
            pose_to_matrix(result.head_relative_pose),
            transform @ pose_to_matrix(result.tracker_pose),
            atol=1e-9,
        )

    @pytest.mark.parametrize("method", ["iterative", "sqpnp"])
    def test_methods_agree(self, tracker, observations, method: str) -> None:
        solver = TrackerPoseSolver(OpenCvPoseSolver(method))
        result = solver.solve(tracker, 0, DEFAULT_TARGET.object_points(), observations)
        assert result.valid
        assert result.tracker_pose.position == pytest.approx(EYE, abs=1e-2)


# ---------------------------------------------------------------------------
# Failure modes and error aggregation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_missing_location(self, tracker, observations) -> None:
        observations[2] = None
        result = TrackerPoseSolver().solve(
            tracker, 1, DEFAULT_TARGET.object_points(), observations,
        )
        assert not result.valid
        assert result.tracker_index == 1

    def test_coincident_points(self, tracker) -> None:
        same = [(320.0, 240.0)] * 5
        result = TrackerPoseSolver().solve(
            tracker, 0, DEFAULT_TARGET.object_points(), same,
        )
        assert not result.valid

    def test_collinear_points(self, tracker) -> None:
        line = [(100.0 + 20.0 * i, 200.0) for i in range(5)]
        result = TrackerPoseSolver().solve(
            tracker, 0, DEFAULT_TARGET.object_points(), line,
        )
        assert not result.valid

    def test_solver_without_solution(self, tracker, observations) -> None:
        solver = TrackerPoseSolver(_FixedSolver(None))
        result = solver.solve(tracker, 0, DEFAULT_TARGET.object_points(), observations)
        assert not result.valid
        assert result.head_relative_pose is None

    def test_non_finite_solution(self, tracker, observations) -> None:
        bad = (np.array([np.nan, 0.0, 0.0]), np.array([0.0, 0.0, 100.0]))
        solver = TrackerPoseSolver(_FixedSolver(bad))
        result = solver.solve(tracker, 0, DEFAULT_TARGET.object_points(), observations)
        assert not result.valid

    def test_error_is_mean_of_squared_distances(self, tracker, observations) -> None:
        _, height = tracker.pixel_extents()
        flipped = flip_image_points(observations, height)
        projected = flipped.copy()
        projected[4] += (3.0, 4.0)

        solver = TrackerPoseSolver(
            _FixedSolver((np.zeros(3), np.array([0.0, 0.0, 100.0])), projected)
        )
        result = solver.solve(tracker, 0, DEFAULT_TARGET.object_points(), observations)
        assert result.valid
        assert result.reprojection_error == pytest.approx(25.0 / 5)
        assert result.max_reprojection_error == pytest.approx(25.0)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_observation(self, tracker, observations, bad: float) -> None:
        observations[1] = (bad, 10.0)
        result = TrackerPoseSolver().solve(
            tracker, 0, DEFAULT_TARGET.object_points(), observations,
        )
        assert not result.valid
        assert result.tracker_pose is None

    def test_distortion_is_fresh_per_call(self, tracker, observations) -> None:
        backend = _ScribblingSolver()
        solver = TrackerPoseSolver(backend)
        for _ in range(2):
            result = solver.solve(tracker, 0, DEFAULT_TARGET.object_points(), observations)
            assert result.valid
            assert result.reprojection_error == pytest.approx(0.0, abs=1e-6)
        assert len(backend.seen) == 4
        for dist in backend.seen:
            np.testing.assert_array_equal(dist, np.zeros((4, 1)))
