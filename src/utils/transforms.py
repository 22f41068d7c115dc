"""Rigid-body poses and 4x4 homogeneous transforms.

Provides:
    - Pose: immutable (position, orientation) pair with quaternion (w, x, y, z)
    - Conversions: pose_to_matrix(), matrix_to_pose(), quat_to_matrix()
    - Composition helpers: invert_transform(), compose(), transform_points()
    - Quaternion helpers: normalize_quat() with identity fallback

Used by:
    - Frame composer: chaining head / calibration / controller tracking frames
    - Pose solver: converting solvePnP's [R|t] into tracker poses
    - Devices: simulated head and tracker extrinsics
    - Result sinks: serialising poses to YAML

Conventions:
    - Column vectors: a transform T maps p (frame A) to T @ p (frame B)
    - compose(A, B, C) == A @ B @ C, so C is applied first
    - Quaternions are scalar-first (w, x, y, z); scipy's scalar-last order is
      only used inside this module
    - Positions are in centimetres unless a caller says otherwise
"""

from dataclasses import dataclass, field
from typing import Iterable, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

IDENTITY_QUAT: Tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0)

# Quaternion norms below this are treated as degenerate
QUAT_EPS = 1e-9


@dataclass(frozen=True)
class Pose:
    """Rigid pose: position plus unit orientation quaternion.

    Parameters
    ----------
    position : Tuple[float, float, float]
        Translation (x, y, z).
    orientation : Tuple[float, float, float, float]
        Quaternion (w, x, y, z).
    """

    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: Tuple[float, float, float, float] = field(default=IDENTITY_QUAT)

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", tuple(float(v) for v in self.position))
        object.__setattr__(self, "orientation", tuple(float(v) for v in self.orientation))
        if len(self.position) != 3:
            raise ValueError(f"position must have 3 components, got {len(self.position)}")
        if len(self.orientation) != 4:
            raise ValueError(f"orientation must have 4 components, got {len(self.orientation)}")

    @classmethod
    def identity(cls) -> "Pose":
        return cls()

    def to_matrix(self) -> np.ndarray:
        return pose_to_matrix(self)

    def as_dict(self) -> dict:
        """Plain-python form for YAML serialisation."""
        return {
            "position": list(self.position),
            "orientation": list(self.orientation),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Pose":
        return cls(
            position=tuple(data.get("position", (0.0, 0.0, 0.0))),
            orientation=tuple(data.get("orientation", IDENTITY_QUAT)),
        )


def normalize_quat(
    q: Sequence[float],
    default: Sequence[float] = IDENTITY_QUAT
) -> Tuple[float, float, float, float]:
    """Normalise quaternion, falling back to ``default`` when degenerate.

    Parameters
    ----------
    q : Sequence[float]
        Quaternion (w, x, y, z), any length.
    default : Sequence[float]
        Returned unchanged if ``|q|`` is below ``QUAT_EPS`` or non-finite.

    Returns
    -------
    Tuple[float, float, float, float]
        Unit quaternion (w, x, y, z).
    """
    arr = np.asarray(q, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if not np.isfinite(norm) or norm < QUAT_EPS:
        return tuple(float(v) for v in default)
    arr = arr / norm
    return tuple(float(v) for v in arr)


def quat_to_matrix(q: Sequence[float]) -> np.ndarray:
    """Convert (w, x, y, z) quaternion to 3x3 rotation matrix.

    Non-unit input is normalised; a zero quaternion yields identity.
    """
    w, x, y, z = normalize_quat(q)
    return Rotation.from_quat([x, y, z, w]).as_matrix()


def matrix_to_quat(R: np.ndarray) -> Tuple[float, float, float, float]:
    """Convert 3x3 rotation matrix to (w, x, y, z) quaternion with w >= 0."""
    x, y, z, w = Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_quat()
    if w < 0.0:
        w, x, y, z = -w, -x, -y, -z
    return (float(w), float(x), float(y), float(z))


def pose_to_matrix(pose: Pose) -> np.ndarray:
    """Build 4x4 homogeneous transform from a pose (rotate, then translate)."""
    T = np.eye(4, dtype=np.float64)
    T[:3, :3] = quat_to_matrix(pose.orientation)
    T[:3, 3] = pose.position
    return T


def matrix_to_pose(T: np.ndarray) -> Pose:
    """Decompose 4x4 rigid transform into a pose.

    The rotation block is assumed orthonormal; no scale is extracted.
    """
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"Expected (4, 4) transform, got {T.shape}")
    return Pose(
        position=tuple(T[:3, 3]),
        orientation=matrix_to_quat(T[:3, :3]),
    )


def rt_to_matrix(R: np.ndarray, t: Iterable[float]) -> np.ndarray:
    """Pack a rotation matrix and translation vector into a 4x4 transform."""
    T = np.eye(4, dtype=np.float64)
    T[:3, :3] = np.asarray(R, dtype=np.float64)
    T[:3, 3] = np.asarray(list(t), dtype=np.float64).reshape(3)
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Inverse of a rigid transform.

    Uses the closed form ``[R^T | -R^T t]`` so numerical noise in the
    rotation block does not blow up as a general matrix inverse would.
    Degenerate (non-rigid) input propagates without error.
    """
    T = np.asarray(T, dtype=np.float64)
    R = T[:3, :3]
    t = T[:3, 3]
    inv = np.eye(4, dtype=np.float64)
    inv[:3, :3] = R.T
    inv[:3, 3] = -R.T @ t
    return inv


def compose(*transforms: np.ndarray) -> np.ndarray:
    """Chain transforms left to right as matrix products.

    ``compose(A, B)`` maps a point by B first, then A.
    """
    out = np.eye(4, dtype=np.float64)
    for T in transforms:
        out = out @ np.asarray(T, dtype=np.float64)
    return out


def transform_points(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 transform to an (N, 3) array of points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    T = np.asarray(T, dtype=np.float64)
    return pts @ T[:3, :3].T + T[:3, 3]


def look_at(
    eye: Sequence[float],
    target: Sequence[float],
    up: Sequence[float] = (0.0, 1.0, 0.0)
) -> np.ndarray:
    """Camera-to-world transform for a camera at ``eye`` looking at ``target``.

    Uses the computer-vision camera convention (+Z forward, +Y down in the
    image, +X right), which is what solvePnP recovers.

    Parameters
    ----------
    eye, target : Sequence[float]
        World positions of camera centre and look-at point.
    up : Sequence[float]
        Approximate world up direction; must not be parallel to the view.

    Returns
    -------
    np.ndarray
        4x4 camera pose in world space.
    """
    eye = np.asarray(eye, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - eye
    forward /= np.linalg.norm(forward)
    right = np.cross(forward, np.asarray(up, dtype=np.float64))
    norm = np.linalg.norm(right)
    if norm < 1e-9:
        raise ValueError("up vector is parallel to the viewing direction")
    right /= norm
    down = np.cross(forward, right)
    R = np.column_stack([right, down, forward])
    return rt_to_matrix(R, eye)
