"""
`depth_servo` - depth-camera blob tracking driving a three-axis PID servo loop.

Depth frames are thresholded into a binary mask, the first blob inside the
configured area window becomes the target, and a fixed-rate control loop turns
the target position into thrust / pitch / roll commands sent to the vehicle.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
