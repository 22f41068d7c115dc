"""Shared utilities for the mat calibration tool.

Architecture layers (strict one-way dependency):
    mat_calibration/{scripts,devices,calibration,configs} → src/utils/

Key invariants:
    - Distances in centimetres end-to-end
    - Quaternions are scalar-first (w, x, y, z)
    - YAML-only configs and results
"""

__version__ = "0.1.0"
