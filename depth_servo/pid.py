#!/usr/bin/env python3
# pid.py - per-axis PID controllers for the depth servo loop.

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

# ---------------- Small utils ----------------
def clamp(v: float, lo: float, hi: float) -> float:
    return lo if v < lo else (hi if v > hi else v)

# ---------------- Config dataclasses ----------------
@dataclass
class AxisCfg:
    setpoint: float = 0.0
    kp: float = 0.0
    ki: float = 0.0
    kd: float = 0.0
    bias: float = 0.0                     # output at zero error (hover point for thrust)
    invert: bool = False                  # negate the output before it is sent
    integral_min: Optional[float] = None  # None => unbounded
    integral_max: Optional[float] = None

    def integral_bounds(self) -> tuple:
        lo = float("-inf") if self.integral_min is None else float(self.integral_min)
        hi = float("inf") if self.integral_max is None else float(self.integral_max)
        return lo, hi

# Gain sets tuned on the vehicle at a 50 ms tick (pixels / millimetres in, normalized command out).
def vertical_axis_defaults() -> AxisCfg:
    return AxisCfg(setpoint=200.0, kp=-0.001, ki=-0.002, kd=-1.0, bias=0.53,
                   integral_min=-4000.0, integral_max=4000.0)

def depth_axis_defaults() -> AxisCfg:
    return AxisCfg(setpoint=1200.0, kp=0.001, ki=0.0009, kd=0.4)

def lateral_axis_defaults() -> AxisCfg:
    # Positive roll on the vehicle moves it the opposite way in the image.
    return AxisCfg(setpoint=262.0, kp=0.003, ki=0.0015, kd=4.0, invert=True)

# ---------------- AxisPID ----------------
class AxisPID:
    """
    One controlled axis. tick() is called once per control period with the
    measured process value and returns the control output.

    The integral and derivative are scaled by the tick period in milliseconds
    (integral += e / T, derivative = (e - e_prev) / T). The derivative is 0 on
    the first tick after construction or reset(), when there is no previous
    error to difference against.
    """

    def __init__(self, cfg: AxisCfg, tick_period: float, *, name: str = ""):
        tick_period = float(tick_period)
        if not tick_period > 0.0:
            raise ValueError(f"tick_period must be > 0 (got {tick_period})")
        self.cfg = cfg
        self.tick_period = tick_period
        self.name = str(name)
        self.setpoint = float(cfg.setpoint)
        self.error = 0.0
        self.last_error: Optional[float] = None
        self.integral = 0.0
        self.derivative = 0.0
        self.output = 0.0
        self.ticks = 0

    def reset(self):
        self.error = 0.0
        self.last_error = None
        self.integral = 0.0
        self.derivative = 0.0
        self.output = 0.0

    def set_setpoint(self, value: float):
        self.setpoint = float(value)

    def tick(self, process_value: float) -> float:
        cfg = self.cfg
        T = self.tick_period

        e = self.setpoint - float(process_value)
        lo, hi = cfg.integral_bounds()
        self.integral = clamp(self.integral + e / T, lo, hi)
        if self.last_error is None:
            self.derivative = 0.0
        else:
            self.derivative = (e - self.last_error) / T
        self.last_error = e
        self.error = e

        out = (float(cfg.bias)
               + float(cfg.kp) * e
               + float(cfg.ki) * self.integral
               + float(cfg.kd) * self.derivative)
        if cfg.invert:
            out = -out
        self.output = out
        self.ticks += 1
        return out

    def snapshot(self) -> Dict[str, Any]:
        return {
            "setpoint": self.setpoint,
            "error": self.error,
            "integral": self.integral,
            "derivative": self.derivative,
            "output": self.output,
        }
