#!/usr/bin/env python3
# controller.py - control tick: latest target -> three axis PIDs -> actuation command.

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional
import threading
import time

from .command import ActuationCommand, disarm_command
from .logutil import RateLimitedLog, log
from .pid import AxisCfg, AxisPID
from .target import TargetTracker

LostActionT = Literal["hold", "disarm"]


@dataclass
class LostTargetPolicy:
    """
    What to do while no frame has produced a target for `max_age_s` seconds.
      hold   - keep steering toward the last known target
      disarm - send the zero-thrust command instead, and restart PID history
               once the target comes back
    """
    max_age_s: float = 1.0
    action: LostActionT = "hold"


class ServoController:
    """
    Call tick() once per control period (ControlScheduler does). Each tick
    reads the tracker snapshot, steps the three axes, sends one command and
    publishes a status line. tick() never raises.

      vertical axis: image y  -> thrust
      depth axis:    depth z  -> pitch
      lateral axis:  image x  -> roll
    """

    def __init__(
        self,
        tracker: TargetTracker,
        channel,
        *,
        vertical: AxisCfg,
        depth: AxisCfg,
        lateral: AxisCfg,
        tick_period_ms: float = 50.0,
        status_sink: Optional[Callable[[str], None]] = None,
        telemetry=None,
        lost_policy: Optional[LostTargetPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tracker = tracker
        self.channel = channel
        self.vertical = AxisPID(vertical, tick_period_ms, name="vertical")
        self.depth = AxisPID(depth, tick_period_ms, name="depth")
        self.lateral = AxisPID(lateral, tick_period_ms, name="lateral")
        self.tick_period_ms = float(tick_period_ms)
        self.status_sink = status_sink
        self.telemetry = telemetry
        self.lost_policy = lost_policy or LostTargetPolicy()
        self.clock = clock

        self.ticks = 0
        self.send_failures = 0
        self.suppressed = 0
        self.last_command: Optional[ActuationCommand] = None
        self.status_text = ""
        self._lost_active = False
        self._err_log = RateLimitedLog("ctrl", 1.0)
        self._send_lock = threading.Lock()
        self._disarmed = False

    # ---------- setpoints ----------
    def set_setpoint(self, x: float, y: float):
        """Image-space setpoint (e.g. from a click on the depth view)."""
        self.lateral.set_setpoint(int(x))
        self.vertical.set_setpoint(int(y))
        log("ctrl", f"setpoint x={int(x)} y={int(y)}")

    def set_depth_setpoint(self, z: float):
        self.depth.set_setpoint(float(z))

    def axes(self) -> Dict[str, AxisPID]:
        return {"vertical": self.vertical, "depth": self.depth, "lateral": self.lateral}

    # ---------- tick ----------
    def tick(self) -> Optional[ActuationCommand]:
        try:
            return self._tick()
        except Exception as e:
            self._err_log(f"tick failed: {e}")
            return None

    def _tick(self) -> Optional[ActuationCommand]:
        if self._disarmed:
            return None
        st = self.tracker.read()
        age = self.tracker.age(self.clock())
        lost = age > float(self.lost_policy.max_age_s)

        if lost and self.lost_policy.action == "disarm":
            if not self._lost_active:
                log("ctrl", f"target lost for {age:.2f}s -> disarm")
            self._lost_active = True
            cmd = disarm_command()
        else:
            if self._lost_active:
                log("ctrl", "target reacquired -> resume")
                for ax in self.axes().values():
                    ax.reset()
                self._lost_active = False
            thrust = self.vertical.tick(st.y)
            pitch = self.depth.tick(st.z)
            roll = self.lateral.tick(st.x)
            cmd = ActuationCommand(thrust=thrust, pitch=pitch, roll=roll)

        ok = self._send(cmd)
        if ok is None:
            # disarm() won the race while this tick was computing
            return None
        self.ticks += 1
        self.last_command = cmd
        self._publish_status(cmd)
        self._log_telemetry(st, cmd, ok, age)
        return cmd

    def disarm(self) -> bool:
        """
        Send a single zero-thrust command and latch: every later tick() or
        disarm() sends nothing, including a tick that was already running.
        """
        cmd = disarm_command()
        ok = self._send(cmd, final=True)
        if ok is None:
            log("ctrl", "disarm already sent")
            return False
        self.last_command = cmd
        log("ctrl", f"disarm sent={int(ok)}")
        self._publish_status(cmd)
        return ok

    @property
    def disarmed(self) -> bool:
        return self._disarmed

    # ---------- internals ----------
    def _send(self, cmd: ActuationCommand, *, final: bool = False) -> Optional[bool]:
        """True/False for sent/failed; None when suppressed after disarm."""
        with self._send_lock:
            if self._disarmed:
                self.suppressed += 1
                return None
            if final:
                self._disarmed = True
            try:
                ok = bool(self.channel.send(cmd.encode()))
            except Exception as e:
                ok = False
                self._err_log(f"send raised: {e}")
        if not ok:
            self.send_failures += 1
        return ok

    def status_line(self, cmd: ActuationCommand) -> str:
        roll = cmd.roll
        if self.lateral.cfg.invert and roll:
            roll = -roll  # lateral axis output before the sign flip on the wire
        parts = [f"Thrust: {cmd.thrust:.4f} Roll: {roll:.4f} Pitch: {cmd.pitch:.4f}"]
        for name, ax in self.axes().items():
            parts.append(f"{name}: e={ax.error:.1f} i={ax.integral:.2f} d={ax.derivative:.3f}")
        return " | ".join(parts)

    def _publish_status(self, cmd: ActuationCommand):
        self.status_text = self.status_line(cmd)
        if self.status_sink is None:
            return
        try:
            self.status_sink(self.status_text)
        except Exception as e:
            self._err_log(f"status sink failed: {e}")

    def _log_telemetry(self, st, cmd: ActuationCommand, ok: bool, age: float):
        if self.telemetry is None:
            return
        row: Dict[str, Any] = {
            "tick": self.ticks,
            "tgt_x": st.x, "tgt_y": st.y, "tgt_z": st.z, "tgt_seq": st.seq,
            "tgt_age_s": round(age, 3) if age != float("inf") else "",
            "thrust": cmd.thrust, "pitch": cmd.pitch, "roll": cmd.roll,
            "sent": int(ok), "lost": int(self._lost_active),
        }
        for name, ax in self.axes().items():
            for k, v in ax.snapshot().items():
                row[f"{name}_{k}"] = v
        try:
            self.telemetry.log("tick", row)
        except Exception as e:
            self._err_log(f"telemetry write failed: {e}")
