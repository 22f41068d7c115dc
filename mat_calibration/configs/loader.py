"""Configuration loader for mat calibration.

Loads and validates ``calibration.yaml`` into typed, frozen dataclasses.
Session timing, sample counts, mat geometry and solver settings all come
from the config; the module-level constants in ``calibration.target``,
``calibration.stability`` and ``calibration.samples`` are the defaults
used when a key is omitted.

Distances are in **centimetres**, durations in **milliseconds**.

Usage::

    from mat_calibration.configs.loader import load_config
    cfg = load_config()                           # default path
    cfg = load_config("/custom/calibration.yaml") # explicit path
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mat_calibration.calibration.pose_solver import (
    DEFAULT_MIN_POINT_SPREAD_PX,
    SOLVER_METHODS,
)
from mat_calibration.calibration.samples import DEFAULT_SAMPLES_PER_LOCATION
from mat_calibration.calibration.stability import DEFAULT_DWELL_MS
from mat_calibration.calibration.target import (
    BULB_HEIGHT_CM,
    LOCATION_LABELS,
    MAT_LOCATION_COUNT,
    SAMPLE_X_OFFSET_CM,
    SAMPLE_Z_OFFSET_CM,
    CalibrationTarget,
)
from src.utils.fs import load_yaml
from src.utils.transforms import IDENTITY_QUAT, QUAT_EPS, Pose, normalize_quat

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionConfig:
    """Session timing and sample counts.

    Parameters
    ----------
    dwell_ms : float
        Continuous stable duration required before a placement is accepted.
    samples_per_location : int
        Controller pixel samples averaged per (tracker, location).
    head_sample_count : int
        Head pose samples averaged at the calibration origin.
    """

    dwell_ms: float = DEFAULT_DWELL_MS
    samples_per_location: int = DEFAULT_SAMPLES_PER_LOCATION
    head_sample_count: int = MAT_LOCATION_COUNT


@dataclass(frozen=True)
class MatConfig:
    """Mat geometry and its placement in controller tracking space."""

    bulb_height_cm: float = BULB_HEIGHT_CM
    x_offset_cm: float = SAMPLE_X_OFFSET_CM
    z_offset_cm: float = SAMPLE_Z_OFFSET_CM
    location_labels: tuple[str, ...] = LOCATION_LABELS
    calibration_offset: Pose = Pose()


@dataclass(frozen=True)
class SolverConfig:
    """Perspective-n-point solver settings."""

    method: str = "iterative"
    min_point_spread_px: float = DEFAULT_MIN_POINT_SPREAD_PX


@dataclass(frozen=True)
class LoggingConfig:
    """Logging defaults used by the CLI."""

    level: str = "INFO"
    file: str | None = None
    json: bool = False


@dataclass(frozen=True)
class CalibrationConfig:
    """Top-level configuration."""

    session: SessionConfig
    mat: MatConfig
    solver: SolverConfig
    logging: LoggingConfig

    def target(self) -> CalibrationTarget:
        """Mat target built from the ``mat`` section."""
        return CalibrationTarget.from_dimensions(
            bulb_height_cm=self.mat.bulb_height_cm,
            x_offset_cm=self.mat.x_offset_cm,
            z_offset_cm=self.mat.z_offset_cm,
            labels=self.mat.location_labels,
        )


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _parse_triple(label: str, raw: Any) -> tuple[float, float, float]:
    if not isinstance(raw, (list, tuple)) or len(raw) != 3:
        raise ConfigError(f"{label} must be a 3-element list, got {raw!r}")
    return (float(raw[0]), float(raw[1]), float(raw[2]))


def _parse_offset(data: dict[str, Any] | None) -> Pose:
    """Parse ``mat.calibration_offset`` (position + w,x,y,z quaternion)."""
    if not data:
        return Pose()
    position = _parse_triple(
        "mat.calibration_offset.position", data.get("position", [0.0, 0.0, 0.0]),
    )
    raw_q = data.get("orientation", list(IDENTITY_QUAT))
    if not isinstance(raw_q, (list, tuple)) or len(raw_q) != 4:
        raise ConfigError(
            f"mat.calibration_offset.orientation must be a 4-element "
            f"(w, x, y, z) list, got {raw_q!r}"
        )
    q = [float(v) for v in raw_q]
    if math.sqrt(sum(v * v for v in q)) < QUAT_EPS:
        raise ConfigError(
            f"mat.calibration_offset.orientation has zero norm: {raw_q!r}"
        )
    return Pose(position=position, orientation=normalize_quat(q))


def _parse_session(data: dict[str, Any]) -> SessionConfig:
    return SessionConfig(
        dwell_ms=float(data.get("dwell_ms", DEFAULT_DWELL_MS)),
        samples_per_location=int(
            data.get("samples_per_location", DEFAULT_SAMPLES_PER_LOCATION)
        ),
        head_sample_count=int(data.get("head_sample_count", MAT_LOCATION_COUNT)),
    )


def _parse_mat(data: dict[str, Any]) -> MatConfig:
    labels = data.get("location_labels", list(LOCATION_LABELS))
    if not isinstance(labels, (list, tuple)):
        raise ConfigError(f"mat.location_labels must be a list, got {labels!r}")
    return MatConfig(
        bulb_height_cm=float(data.get("bulb_height_cm", BULB_HEIGHT_CM)),
        x_offset_cm=float(data.get("x_offset_cm", SAMPLE_X_OFFSET_CM)),
        z_offset_cm=float(data.get("z_offset_cm", SAMPLE_Z_OFFSET_CM)),
        location_labels=tuple(str(v) for v in labels),
        calibration_offset=_parse_offset(data.get("calibration_offset")),
    )


def _parse_solver(data: dict[str, Any]) -> SolverConfig:
    return SolverConfig(
        method=str(data.get("method", "iterative")).lower(),
        min_point_spread_px=float(
            data.get("min_point_spread_px", DEFAULT_MIN_POINT_SPREAD_PX)
        ),
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    log_file = data.get("file")
    return LoggingConfig(
        level=str(data.get("level", "INFO")).upper(),
        file=str(log_file) if log_file else None,
        json=bool(data.get("json", False)),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_config(cfg: CalibrationConfig) -> None:
    """Validate cross-field consistency.

    Raises
    ------
    ConfigError
        On any invalid combination.
    """
    s = cfg.session
    if s.dwell_ms < 0:
        raise ConfigError(f"session.dwell_ms must be >= 0, got {s.dwell_ms}")
    if s.samples_per_location < 1:
        raise ConfigError(
            f"session.samples_per_location must be >= 1, "
            f"got {s.samples_per_location}"
        )
    if s.head_sample_count < 1:
        raise ConfigError(
            f"session.head_sample_count must be >= 1, got {s.head_sample_count}"
        )
    if s.dwell_ms == 0:
        logger.warning("session.dwell_ms is 0: placements are accepted instantly")

    m = cfg.mat
    if len(m.location_labels) != MAT_LOCATION_COUNT:
        raise ConfigError(
            f"mat.location_labels needs {MAT_LOCATION_COUNT} entries, "
            f"got {len(m.location_labels)}"
        )
    if len(set(m.location_labels)) != len(m.location_labels):
        raise ConfigError(
            f"mat.location_labels must be unique, got {list(m.location_labels)}"
        )
    if m.x_offset_cm <= 0 or m.z_offset_cm <= 0:
        raise ConfigError(
            f"mat offsets must be positive, got x={m.x_offset_cm}, "
            f"z={m.z_offset_cm}"
        )

    if cfg.solver.method not in SOLVER_METHODS:
        raise ConfigError(
            f"solver.method must be one of {sorted(SOLVER_METHODS)}, "
            f"got {cfg.solver.method!r}"
        )
    if cfg.solver.min_point_spread_px < 0:
        raise ConfigError(
            f"solver.min_point_spread_px must be >= 0, "
            f"got {cfg.solver.min_point_spread_px}"
        )

    if cfg.logging.level not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {_LOG_LEVELS}, got {cfg.logging.level!r}"
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> CalibrationConfig:
    """Load and validate calibration configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``calibration.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    CalibrationConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is malformed or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "calibration.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {path}")

    try:
        config = CalibrationConfig(
            session=_parse_session(data.get("session") or {}),
            mat=_parse_mat(data.get("mat") or {}),
            solver=_parse_solver(data.get("solver") or {}),
            logging=_parse_logging(data.get("logging") or {}),
        )

        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc
