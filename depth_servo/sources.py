"""Depth frame sources: live RealSense z16 stream or a synthetic moving target."""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Optional

import numpy as np

from .logutil import log
from .pipeline import DepthFrame

FrameCallback = Callable[[DepthFrame], None]
StatusCallback = Callable[[str], None]


def import_realsense():
    try:
        import pyrealsense2 as rs  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"pyrealsense2 is required: {exc}") from exc
    return rs


class _ThreadedSource:
    def __init__(self, name: str):
        self.name = name
        self.frames = 0
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._on_frame: Optional[FrameCallback] = None

    def start(self, on_frame: FrameCallback):
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._on_frame = on_frame
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0):
        self._stop_evt.set()
        th = self._thread
        if th is not None and th is not threading.current_thread():
            th.join(timeout=timeout)
        self._release()

    def _deliver(self, frame: DepthFrame):
        self.frames += 1
        cb = self._on_frame
        if cb is not None:
            cb(frame)

    def _run(self):
        raise NotImplementedError

    def _release(self):
        pass


class RealsenseDepthSource(_ThreadedSource):
    """
    z16 depth stream; samples are converted to millimetres with the device
    depth scale so the depth knobs mean the same thing on every camera.
    """

    def __init__(self, width: int = 640, height: int = 480, fps: int = 30, *,
                 status: Optional[StatusCallback] = None, timeout_ms: int = 1000):
        super().__init__("realsense-depth")
        self.rs = import_realsense()
        self.width = int(width)
        self.height = int(height)
        self.fps = int(fps)
        self.status = status
        self.timeout_ms = int(timeout_ms)
        self.pipe = None
        self._mm_per_unit = 1.0
        self._available: Optional[bool] = None

    def _set_available(self, ok: bool, detail: str = ""):
        if self._available == ok:
            return
        self._available = ok
        msg = "sensor running" if ok else f"sensor not available{': ' + detail if detail else ''}"
        log("sensor", msg)
        if self.status is not None:
            try:
                self.status(msg)
            except Exception:
                pass

    def open(self):
        rs = self.rs
        self.pipe = rs.pipeline()
        cfg = rs.config()
        cfg.enable_stream(rs.stream.depth, self.width, self.height, rs.format.z16, self.fps)
        prof = self.pipe.start(cfg)
        try:
            scale_m = float(prof.get_device().first_depth_sensor().get_depth_scale())
        except Exception:
            scale_m = 0.001
        self._mm_per_unit = scale_m * 1000.0
        log("sensor", f"realsense depth {self.width}x{self.height}@{self.fps} scale={scale_m:.6f} m/unit")
        self._set_available(True)

    def start(self, on_frame: FrameCallback):
        if self.pipe is None:
            self.open()
        super().start(on_frame)

    def _run(self):
        while not self._stop_evt.is_set():
            try:
                frames = self.pipe.wait_for_frames(self.timeout_ms)
            except RuntimeError as e:
                # Timeout or unplug: report and keep waiting; the control loop is not stopped.
                self._set_available(False, str(e))
                continue
            depth = frames.get_depth_frame()
            if not depth:
                continue
            self._set_available(True)
            raw = np.asanyarray(depth.get_data())
            if abs(self._mm_per_unit - 1.0) > 1e-6:
                raw = np.clip(raw.astype(np.float32) * self._mm_per_unit, 0, 0xFFFF).astype(np.uint16)
            self._deliver(DepthFrame(
                data=np.ascontiguousarray(raw),
                width=int(depth.get_width()),
                height=int(depth.get_height()),
                bytes_per_pixel=int(depth.get_bytes_per_pixel()),
                timestamp=float(depth.get_timestamp()) / 1000.0,
            ))

    def _release(self):
        if self.pipe is None:
            return
        try:
            self.pipe.stop()
        except RuntimeError:
            pass
        self.pipe = None


class SyntheticDepthSource(_ThreadedSource):
    """
    Flat background with one disc at `target_mm` moving on a Lissajous path.
    Useful for dry runs and for exercising the whole loop without a camera.
    """

    def __init__(self, width: int = 640, height: int = 480, fps: int = 30, *,
                 background_mm: int = 3000, target_mm: int = 1200, radius_px: int = 30,
                 amplitude_px: float = 60.0, period_s: float = 6.0):
        super().__init__("synthetic-depth")
        self.width = int(width)
        self.height = int(height)
        self.fps = int(fps)
        self.background_mm = int(background_mm)
        self.target_mm = int(target_mm)
        self.radius_px = int(radius_px)
        self.amplitude_px = float(amplitude_px)
        self.period_s = float(period_s)
        self._yy, self._xx = np.ogrid[: self.height, : self.width]

    def render(self, t: float) -> np.ndarray:
        w = 2.0 * math.pi / max(1e-3, self.period_s)
        cx = self.width * 0.5 + self.amplitude_px * math.sin(w * t)
        cy = self.height * 0.5 + 0.5 * self.amplitude_px * math.sin(2.0 * w * t)
        img = np.full((self.height, self.width), self.background_mm, dtype=np.uint16)
        disc = (self._xx - cx) ** 2 + (self._yy - cy) ** 2 <= self.radius_px ** 2
        img[disc] = np.uint16(self.target_mm)
        return img

    def _run(self):
        period = 1.0 / max(1, self.fps)
        t0 = time.monotonic()
        next_t = t0
        while not self._stop_evt.is_set():
            now = time.monotonic()
            self._deliver(DepthFrame(
                data=self.render(now - t0),
                width=self.width,
                height=self.height,
                timestamp=now,
            ))
            next_t += period
            delay = next_t - time.monotonic()
            if delay > 0.0:
                self._stop_evt.wait(delay)
            else:
                next_t = time.monotonic()
