"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Atomic I/O and YAML (fs)
    - Unified logging (logging_config)
    - Rigid-body poses and 4x4 transforms (transforms)

No module in utils/ may import from mat_calibration.

Convenience imports:
    from src.utils import fs, transforms
    from src.utils.logging_config import setup_logging, log_context
"""

# Re-export commonly used modules for convenience
from . import fs
from . import logging_config
from . import transforms

# Common functions for direct import
from .logging_config import log_context, push_context, setup_logging

__all__ = [
    # Modules
    'fs',
    'logging_config',
    'transforms',
    # Direct exports
    'setup_logging',
    'log_context',
    'push_context',
]
