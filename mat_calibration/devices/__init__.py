"""Device interfaces consumed by the session.

Simulated devices live in :mod:`mat_calibration.devices.simulated` and are
imported from there directly.
"""

from mat_calibration.devices.interfaces import (
    ControllerStatus,
    HeadDeviceStatus,
    PerspectivePoseSolver,
    PoseSink,
    TrackerCollection,
    TrackerView,
)

__all__ = [
    "ControllerStatus",
    "HeadDeviceStatus",
    "PerspectivePoseSolver",
    "PoseSink",
    "TrackerCollection",
    "TrackerView",
]
