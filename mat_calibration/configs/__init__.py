"""Calibration configuration loading and validation."""

from mat_calibration.configs.loader import (
    CalibrationConfig,
    ConfigError,
    LoggingConfig,
    MatConfig,
    SessionConfig,
    SolverConfig,
    load_config,
)

__all__ = [
    "CalibrationConfig",
    "ConfigError",
    "LoggingConfig",
    "MatConfig",
    "SessionConfig",
    "SolverConfig",
    "load_config",
]
