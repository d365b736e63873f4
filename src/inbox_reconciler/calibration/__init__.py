"""
Calibration module.

Adapts a team's suggestion threshold from confirmed, declined and
unmatched history.
"""

from .engine import Nudge, TeamCalibrator, apply_nudge, compute_calibration

__all__ = [
    "Nudge",
    "TeamCalibrator",
    "apply_nudge",
    "compute_calibration",
]
