"""
Mat Calibration Package.

Guides an operator through placing a tracked controller on five known mat
locations, then recovers each fixed optical tracker's pose in controller
tracking space and relative to the head device's tracking camera.

Subpackages:
    calibration: Stability detection, sampling, frame composition, pose
        solving and the session state machine
    devices: Abstract device interfaces plus simulated devices and sinks
    configs: Calibration configuration loading and validation
    scripts: Command-line entry points
"""

__version__ = "0.1.0"

__all__ = ["calibration", "devices", "configs", "scripts"]
