"""Mat calibration core: sampling, solving and the session state machine."""

from mat_calibration.calibration.frames import CoordinateFrameComposer
from mat_calibration.calibration.pose_solver import (
    OpenCvPoseSolver,
    TrackerPoseResult,
    TrackerPoseSolver,
)
from mat_calibration.calibration.samples import (
    HeadSampleSet,
    SampleAccumulator,
    TrackerSampleSet,
)
from mat_calibration.calibration.session import (
    CalibrationSessionController,
    CalibrationStep,
    SessionStatus,
    TrackerProgress,
)
from mat_calibration.calibration.stability import StabilityDetector
from mat_calibration.calibration.target import (
    DEFAULT_TARGET,
    CalibrationTarget,
    MatLocation,
)

__all__ = [
    "DEFAULT_TARGET",
    "CalibrationSessionController",
    "CalibrationStep",
    "CalibrationTarget",
    "CoordinateFrameComposer",
    "HeadSampleSet",
    "MatLocation",
    "OpenCvPoseSolver",
    "SampleAccumulator",
    "SessionStatus",
    "StabilityDetector",
    "TrackerPoseResult",
    "TrackerPoseSolver",
    "TrackerProgress",
    "TrackerSampleSet",
]
