import threading
import time

import numpy as np

from depth_servo.app import ServoApp, build_arg_parser, main
from depth_servo.command import parse_command
from depth_servo.config import load_config
from depth_servo.pipeline import DepthFrame
from depth_servo.sources import SyntheticDepthSource


class RecordingChannel:
    def __init__(self):
        self.messages = []
        self.closed_after = None
        self._lock = threading.Lock()

    def send(self, message):
        with self._lock:
            if self.closed_after is not None:
                return False
            self.messages.append(message)
            return True

    def close(self):
        with self._lock:
            self.closed_after = len(self.messages)


class ManualSource:
    def __init__(self):
        self.cb = None
        self.stopped_after_messages = None
        self.channel = None

    def start(self, on_frame):
        self.cb = on_frame

    def stop(self):
        self.stopped_after_messages = len(self.channel.messages)


def _app(source, **overrides):
    ov = ["control.tick_ms=5", "transport.kind=print", "sensor.width=160", "sensor.height=120"]
    ov += [f"{k}={v}" for k, v in overrides.items()]
    app = ServoApp(load_config(None, ov), source=source)
    app.channel = RecordingChannel()
    app.controller.channel = app.channel
    return app


def test_shutdown_disarms_before_sensor_and_channel_teardown():
    src = ManualSource()
    app = _app(src)
    src.channel = app.channel
    app.start()
    time.sleep(0.05)
    app.shutdown()
    app.shutdown()
    msgs = app.channel.messages
    last = parse_command(msgs[-1])
    assert last.thrust == 0.0 and last.pitch == 0.0 and last.roll == 0.0
    zero = [m for m in msgs if parse_command(m).thrust == 0.0]
    assert len(zero) == 1
    assert src.stopped_after_messages == len(msgs)
    assert app.channel.closed_after == len(msgs)


def test_malformed_frame_end_to_end_no_side_effects():
    src = ManualSource()
    app = _app(src)
    src.channel = app.channel
    src.start(app.pipeline.on_frame)
    before = app.tracker.read()
    bad = DepthFrame(data=b"\x00" * 100, width=160, height=120)
    assert app.pipeline.on_frame(bad) is None
    assert app.tracker.read() is before
    assert app.channel.messages == []


def test_synthetic_source_drives_tracker():
    src = SyntheticDepthSource(160, 120, 100, target_mm=1000, radius_px=10, amplitude_px=20)
    app = _app(src, **{"knobs.min_blob_area": 50})
    src_frames = []
    app.pipeline.on_result = lambda r: src_frames.append(len(r.blobs))
    app.start()
    deadline = time.monotonic() + 2.0
    while app.tracker.read().seq == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    app.shutdown()
    st = app.tracker.read()
    assert st.seq > 0
    assert st.z == 1000
    assert app.controller.ticks > 0


def test_synthetic_render_places_disc():
    src = SyntheticDepthSource(160, 120, 30, target_mm=900, background_mm=3000, radius_px=5)
    img = src.render(0.0)
    assert img.dtype == np.uint16 and img.shape == (120, 160)
    assert int(img[60, 80]) == 900 and int(img[0, 0]) == 3000


def test_cli_parser_and_config_error_exit_code(capsys):
    args = build_arg_parser().parse_args(["--source", "synthetic", "--set", "a.b=1", "--dry-run"])
    assert args.source == "synthetic" and args.overrides == ["a.b=1"] and args.dry_run
    assert main(["--set", "control.tick_ms=0"]) == 2
    assert "config error" in capsys.readouterr().err


def test_main_dry_run_synthetic(capsys):
    rc = main(["--source", "synthetic", "--dry-run", "--duration", "0.2",
               "--set", "sensor.width=160", "--set", "sensor.height=120", "--set", "control.tick_ms=20"])
    assert rc == 0
    out = capsys.readouterr().out
    assert '"ctrl"' in out
    assert "disarm sent=1" in out


def test_processed_frames_publish_blob_info(capsys):
    src = ManualSource()
    app = _app(src)
    img = SyntheticDepthSource(160, 120, 30, target_mm=1000, radius_px=10, amplitude_px=0).render(0.0)
    res = app.pipeline.on_frame(DepthFrame(data=img, width=160, height=120))
    assert res is not None and len(res.blobs) == 1
    b = res.blobs[0]
    assert app.blob_info == f"Blob 0: \nArea: {int(b.area)}\nCenter: {b.x}, {b.y}\n\n"
    assert f"[blobs] Blob 0: Area: {int(b.area)} Center: {b.x}, {b.y}" in capsys.readouterr().out

    empty = np.full((120, 160), 3000, dtype=np.uint16)
    app.pipeline.on_frame(DepthFrame(data=empty, width=160, height=120))
    assert app.blob_info == ""
