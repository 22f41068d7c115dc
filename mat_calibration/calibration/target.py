"""Calibration mat target geometry.

The mat is a letter-size sheet placed at the controller tracking origin.
The controller is stood upright on each of five marked locations (four
corners plus the centre); the tracked point is the bulb centre, so every
location sits at the same height above the mat surface.

All distances are in **centimetres** in the calibration-origin frame
(X/Z span the mat, +Y is up).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# ---------------------------------------------------------------------------
# Mat layout constants
# ---------------------------------------------------------------------------

MAT_LOCATION_COUNT = 5

# Measured base-to-bulb-centre distance of an upright controller
BULB_HEIGHT_CM = 17.7
# Half the long / short side of an 8.5" x 11" sheet
SAMPLE_X_OFFSET_CM = 14.0
SAMPLE_Z_OFFSET_CM = 10.75

LOCATION_LABELS: tuple[str, ...] = (
    "+X+Z Corner",
    "-X+Z Corner",
    "Center",
    "-X-Z Corner",
    "+X-Z Corner",
)

# Unit-square sign pattern matching LOCATION_LABELS order
_LOCATION_SIGNS: tuple[tuple[float, float], ...] = (
    (1.0, 1.0),
    (-1.0, 1.0),
    (0.0, 0.0),
    (-1.0, -1.0),
    (1.0, -1.0),
)


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatLocation:
    """One labelled sample location on the mat."""

    index: int
    label: str
    position: tuple[float, float, float]


@dataclass(frozen=True)
class CalibrationTarget:
    """Ordered, immutable set of the five mat locations.

    Parameters
    ----------
    locations : tuple[MatLocation, ...]
        Exactly ``MAT_LOCATION_COUNT`` entries, indexed 0..4 in order.
    """

    locations: tuple[MatLocation, ...]

    def __post_init__(self) -> None:
        if len(self.locations) != MAT_LOCATION_COUNT:
            raise ValueError(
                f"Calibration target needs {MAT_LOCATION_COUNT} locations, "
                f"got {len(self.locations)}"
            )
        for i, loc in enumerate(self.locations):
            if loc.index != i:
                raise ValueError(
                    f"Location {loc.label!r} has index {loc.index}, expected {i}"
                )

    @classmethod
    def from_dimensions(
        cls,
        bulb_height_cm: float = BULB_HEIGHT_CM,
        x_offset_cm: float = SAMPLE_X_OFFSET_CM,
        z_offset_cm: float = SAMPLE_Z_OFFSET_CM,
        labels: tuple[str, ...] = LOCATION_LABELS,
    ) -> CalibrationTarget:
        """Build the standard corners-plus-centre layout.

        Parameters
        ----------
        bulb_height_cm : float
            Height of the tracked point above the mat.
        x_offset_cm, z_offset_cm : float
            Half extents of the corner rectangle.
        labels : tuple[str, ...]
            One label per location, in layout order.
        """
        if len(labels) != MAT_LOCATION_COUNT:
            raise ValueError(
                f"Need {MAT_LOCATION_COUNT} location labels, got {len(labels)}"
            )
        locations = tuple(
            MatLocation(
                index=i,
                label=str(label),
                position=(sx * x_offset_cm, bulb_height_cm, sz * z_offset_cm),
            )
            for i, (label, (sx, sz)) in enumerate(zip(labels, _LOCATION_SIGNS))
        )
        return cls(locations=locations)

    def __len__(self) -> int:
        return len(self.locations)

    def __getitem__(self, index: int) -> MatLocation:
        return self.locations[index]

    def label(self, index: int) -> str:
        return self.locations[index].label

    def object_points(self) -> np.ndarray:
        """(5, 3) float64 array of location positions, in index order."""
        return np.array([loc.position for loc in self.locations], dtype=np.float64)


DEFAULT_TARGET = CalibrationTarget.from_dimensions()
