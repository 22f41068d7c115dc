"""Coordinate frame composition: controller tracking space -> head camera.

Frames involved:

Controller tracking space
    Frame the trackers and controller positions are reported in.
Calibration space
    Frame of the mat (origin at the mat centre, on the surface).  Usually
    coincides with controller tracking space; ``calibration_offset`` is
    the mat's pose *in* controller tracking space when it does not.
Head tracking space
    Frame the head device reports its own pose in.
Head camera space
    Frame of the head device's tracking camera.

Every transform is named ``<from>_to_<to>`` and maps points expressed in
``<from>`` into ``<to>``.  Chains read right to left.
"""

from __future__ import annotations

import logging

import numpy as np

from src.utils.transforms import Pose, compose, invert_transform, pose_to_matrix

logger = logging.getLogger(__name__)


class CoordinateFrameComposer:
    """Builds the controller-tracking -> head-camera rigid transform.

    Parameters
    ----------
    calibration_offset : Pose | None
        Pose of the mat origin in controller tracking space.  ``None``
        means the mat is centred on the tracking origin.
    """

    def __init__(self, calibration_offset: Pose | None = None) -> None:
        self.calibration_offset = calibration_offset or Pose.identity()

    def compose(
        self,
        head_camera_to_tracking: Pose,
        head_average: Pose,
    ) -> np.ndarray:
        """Return the 4x4 transform from controller tracking to head camera.

        Parameters
        ----------
        head_camera_to_tracking : Pose
            Head camera pose in head tracking space, as reported by the
            head device.
        head_average : Pose
            Averaged head pose recorded while it rested at the calibration
            origin, i.e. the calibration origin seen in head tracking space.

        Returns
        -------
        np.ndarray
            ``tracking_to_camera @ calibration_to_head_tracking @
            controller_tracking_to_calibration``.  Degenerate inputs are
            not rejected and propagate into the result.
        """
        head_tracking_to_camera = invert_transform(
            pose_to_matrix(head_camera_to_tracking)
        )
        calibration_to_head_tracking = pose_to_matrix(head_average)
        controller_tracking_to_calibration = invert_transform(
            pose_to_matrix(self.calibration_offset)
        )

        transform = compose(
            head_tracking_to_camera,
            calibration_to_head_tracking,
            controller_tracking_to_calibration,
        )
        logger.debug("Controller tracking -> head camera:\n%s", transform)
        return transform
