"""Test rigid-body pose and transform helpers.

Tests for src.utils.transforms:
    - Quaternion normalisation and identity fallback
    - Pose <-> 4x4 matrix conversions (scalar-first quaternions)
    - Closed-form rigid inverse and left-to-right composition
    - look_at camera convention (+X right, +Y down, +Z forward)

Run:
    pytest tests/test_transforms.py -v
"""

import math

import numpy as np
import pytest

from src.utils.transforms import (
    IDENTITY_QUAT,
    Pose,
    compose,
    invert_transform,
    look_at,
    matrix_to_pose,
    matrix_to_quat,
    normalize_quat,
    pose_to_matrix,
    quat_to_matrix,
    rt_to_matrix,
    transform_points,
)

HALF = math.sqrt(0.5)


def test_normalize_quat():
    assert normalize_quat((2.0, 0.0, 0.0, 0.0)) == pytest.approx((1.0, 0.0, 0.0, 0.0))
    assert normalize_quat((0.0, 0.0, 0.0, 0.0)) == IDENTITY_QUAT
    assert normalize_quat((float("nan"), 0, 0, 0), default=(0, 1, 0, 0)) == (0.0, 1.0, 0.0, 0.0)


def test_quat_to_matrix_is_scalar_first():
    # 90 degrees about +Z maps +X to +Y
    R = quat_to_matrix((HALF, 0.0, 0.0, HALF))
    np.testing.assert_allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)


def test_matrix_to_quat_positive_w():
    R = quat_to_matrix((-HALF, 0.0, -HALF, 0.0))
    w, x, y, z = matrix_to_quat(R)
    assert w >= 0.0
    assert (w, x, y, z) == pytest.approx((HALF, 0.0, HALF, 0.0))


def test_pose_matrix_roundtrip():
    pose = Pose(position=(1.0, -2.0, 3.5), orientation=(0.8, 0.0, 0.6, 0.0))
    back = matrix_to_pose(pose_to_matrix(pose))
    assert back.position == pytest.approx(pose.position)
    assert back.orientation == pytest.approx(pose.orientation)


def test_pose_validation_and_dict():
    with pytest.raises(ValueError):
        Pose(position=(1.0, 2.0))
    with pytest.raises(ValueError):
        Pose(orientation=(1.0, 0.0, 0.0))
    pose = Pose(position=(1, 2, 3))
    assert pose.position == (1.0, 2.0, 3.0)
    assert Pose.from_dict(pose.as_dict()) == pose
    assert Pose.identity().to_matrix() == pytest.approx(np.eye(4))


def test_matrix_to_pose_rejects_wrong_shape():
    with pytest.raises(ValueError):
        matrix_to_pose(np.eye(3))


def test_invert_transform():
    T = pose_to_matrix(Pose(position=(4.0, 5.0, 6.0), orientation=(HALF, HALF, 0.0, 0.0)))
    np.testing.assert_allclose(invert_transform(T) @ T, np.eye(4), atol=1e-12)
    np.testing.assert_allclose(invert_transform(T), np.linalg.inv(T), atol=1e-12)


def test_compose_applies_rightmost_first():
    translate = rt_to_matrix(np.eye(3), (1.0, 0.0, 0.0))
    rotate = rt_to_matrix(quat_to_matrix((HALF, 0.0, 0.0, HALF)), (0.0, 0.0, 0.0))
    p = np.array([[1.0, 0.0, 0.0]])
    # rotate then translate
    np.testing.assert_allclose(transform_points(compose(translate, rotate), p), [[1.0, 1.0, 0.0]], atol=1e-12)
    # translate then rotate
    np.testing.assert_allclose(transform_points(compose(rotate, translate), p), [[0.0, 2.0, 0.0]], atol=1e-12)
    np.testing.assert_allclose(compose(), np.eye(4))


def test_look_at_convention():
    T = look_at((0.0, 0.0, -10.0), (0.0, 0.0, 0.0))
    R = T[:3, :3]
    np.testing.assert_allclose(R[:, 2], [0.0, 0.0, 1.0], atol=1e-12)   # forward
    np.testing.assert_allclose(R[:, 1], [0.0, -1.0, 0.0], atol=1e-12)  # image down
    np.testing.assert_allclose(R[:, 0], [-1.0, 0.0, 0.0], atol=1e-12)  # image right
    assert np.linalg.det(R) == pytest.approx(1.0)
    np.testing.assert_allclose(T[:3, 3], [0.0, 0.0, -10.0])


def test_look_at_rejects_parallel_up():
    with pytest.raises(ValueError, match="parallel"):
        look_at((0.0, 10.0, 0.0), (0.0, 0.0, 0.0))
