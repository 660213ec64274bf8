#!/usr/bin/env python3
"""
Entry point: depth source -> VisionPipeline -> TargetTracker <- ServoController (timer) -> channel.

Shutdown order matters: the control timer is stopped first, one zero-thrust
command is sent, and only then are the sensor, the channel and the telemetry
file released.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from typing import List, Optional

from .blobs import format_blob_info
from .config import ConfigError, ServoConfig, load_config
from .controller import ServoController
from .logutil import RateLimitedLog, log
from .pipeline import FrameResult, VisionPipeline
from .scheduler import ControlScheduler
from .sources import RealsenseDepthSource, SyntheticDepthSource
from .target import TargetTracker
from .telemetry import open_telemetry
from .transport import PrintChannel, close_channel, open_channel


class ServoApp:
    def __init__(self, cfg: ServoConfig, *, dry_run: bool = False, source=None):
        self.cfg = cfg
        self._status_log = RateLimitedLog("status", 1.0)
        self._blob_log = RateLimitedLog("blobs", 1.0)
        self.blob_info = ""
        # Sensor first: a missing camera fails startup before any socket is opened.
        self.source = source if source is not None else self._make_source()
        self.tracker = TargetTracker()
        self.pipeline = VisionPipeline(
            self.tracker,
            cfg.knobs,
            expected_size=(cfg.sensor.width, cfg.sensor.height),
            on_result=self._on_result,
        )
        self.channel = PrintChannel() if dry_run else open_channel(cfg.transport)
        self.telemetry = open_telemetry(cfg.telemetry)
        self.controller = ServoController(
            self.tracker,
            self.channel,
            vertical=cfg.vertical,
            depth=cfg.depth,
            lateral=cfg.lateral,
            tick_period_ms=cfg.tick_ms,
            status_sink=self._status_log,
            telemetry=self.telemetry,
            lost_policy=cfg.lost_target,
        )
        self.scheduler = ControlScheduler(
            cfg.tick_ms / 1000.0,
            self.controller.tick,
            self.controller.disarm,
        )
        self._done = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    def _make_source(self):
        s = self.cfg.sensor
        if s.source == "synthetic":
            return SyntheticDepthSource(s.width, s.height, s.fps)
        return RealsenseDepthSource(s.width, s.height, s.fps, status=self._status_log)

    def _on_result(self, res: FrameResult):
        # Latest per-blob Area / Center text; the console copy is rate limited.
        self.blob_info = format_blob_info(res.blobs)
        if res.blobs:
            self._blob_log(" ".join(line.strip() for line in self.blob_info.splitlines() if line))

    def start(self):
        self.source.start(self.pipeline.on_frame)
        self.scheduler.start()
        log("servo", f"running tick={self.cfg.tick_ms:.0f}ms source={self.cfg.sensor.source}")

    def request_stop(self):
        self._done.set()

    def wait(self, duration_s: Optional[float] = None):
        self._done.wait(timeout=duration_s)

    def shutdown(self):
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True
        log("servo", "shutdown: stop timer + disarm")
        self.scheduler.stop()
        try:
            self.source.stop()
        except Exception as e:
            log("servo", f"sensor stop failed: {e}")
        close_channel(self.channel)
        if self.telemetry is not None:
            try:
                self.telemetry.close()
            except OSError as e:
                log("servo", f"telemetry close failed: {e}")
        log(
            "servo",
            f"done frames={self.pipeline.frames} dropped={self.pipeline.dropped_frames} "
            f"ticks={self.controller.ticks} send_failures={self.controller.send_failures}",
        )


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="depth-servo", description="Depth-camera blob servo controller.")
    ap.add_argument("--config", default=None, help="YAML config file (defaults are used for missing keys).")
    ap.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE",
                    help="Override a config value, e.g. --set control.tick_ms=40 (repeatable).")
    ap.add_argument("--source", choices=("realsense", "synthetic"), default=None,
                    help="Depth source (overrides sensor.source).")
    ap.add_argument("--duration", type=float, default=None, help="Stop after this many seconds.")
    ap.add_argument("--dry-run", action="store_true", help="Print commands instead of sending them.")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    overrides = list(args.overrides)
    if args.source:
        overrides.append(f"sensor.source={args.source}")
    try:
        cfg = load_config(args.config, overrides)
    except ConfigError as e:
        print(f"[servo] config error: {e}", file=sys.stderr, flush=True)
        return 2

    try:
        app = ServoApp(cfg, dry_run=bool(args.dry_run))
    except (RuntimeError, OSError, ValueError) as e:
        print(f"[servo] startup failed: {e}", file=sys.stderr, flush=True)
        return 1

    def _on_signal(signum, _frame):
        log("servo", f"signal {signum}")
        app.request_stop()

    prev_handlers = {}
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            prev_handlers[sig] = signal.signal(sig, _on_signal)
        except ValueError:
            # Not the main thread: rely on --duration / request_stop().
            pass

    t0 = time.monotonic()
    try:
        app.start()
        app.wait(args.duration)
    except (RuntimeError, OSError) as e:
        print(f"[servo] error: {e}", file=sys.stderr, flush=True)
        return 1
    finally:
        app.shutdown()
        for sig, h in prev_handlers.items():
            signal.signal(sig, h)
        log("servo", f"uptime {time.monotonic() - t0:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
