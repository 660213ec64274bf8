import threading
import time

import pytest

from depth_servo.blobs import Blob
from depth_servo.command import parse_command
from depth_servo.controller import LostTargetPolicy, ServoController
from depth_servo.pid import AxisCfg, depth_axis_defaults, lateral_axis_defaults, vertical_axis_defaults
from depth_servo.scheduler import ControlScheduler
from depth_servo.target import TargetTracker


class FakeChannel:
    def __init__(self, ok=True):
        self.ok = ok
        self.messages = []
        self.closed = False

    def send(self, message):
        if self.closed:
            return False
        self.messages.append(message)
        return self.ok

    def close(self):
        self.closed = True


class RaisingChannel:
    def send(self, message):
        raise OSError("network down")


def _controller(channel, tracker=None, **kw):
    return ServoController(
        tracker or TargetTracker(),
        channel,
        vertical=vertical_axis_defaults(),
        depth=depth_axis_defaults(),
        lateral=lateral_axis_defaults(),
        tick_period_ms=50.0,
        **kw,
    )


def test_tick_maps_axes_to_command():
    ch = FakeChannel()
    tr = TargetTracker()
    tr.update(Blob(x=262, y=300, area=10.0, depth=1200))
    ctl = _controller(ch, tr)
    cmd = ctl.tick()
    assert cmd.thrust == pytest.approx(0.634)
    assert cmd.pitch == pytest.approx(0.0)
    assert cmd.roll == pytest.approx(0.0)
    sent = parse_command(ch.messages[-1])
    assert sent.thrust == pytest.approx(0.634)
    assert ctl.ticks == 1


def test_lateral_roll_sign_is_inverted():
    ch = FakeChannel()
    tr = TargetTracker()
    tr.update(Blob(x=162, y=200, area=10.0, depth=1200))
    cmd = _controller(ch, tr).tick()
    # e_x = 100 -> 0.003*100 + 0.0015*2 = 0.303, sent negated
    assert cmd.roll == pytest.approx(-0.303)


def test_status_line_published():
    lines = []
    ch = FakeChannel()
    ctl = _controller(ch, status_sink=lines.append)
    ctl.tick()
    assert lines and lines[-1].startswith("Thrust: ")
    assert "vertical: e=" in lines[-1] and "lateral:" in lines[-1] and "depth:" in lines[-1]


def test_transport_faults_do_not_stop_ticking():
    ctl = _controller(RaisingChannel())
    for _ in range(3):
        assert ctl.tick() is not None
    assert ctl.ticks == 3 and ctl.send_failures == 3

    ctl2 = _controller(FakeChannel(ok=False))
    ctl2.tick()
    assert ctl2.send_failures == 1


def test_status_sink_errors_are_contained():
    def sink(_):
        raise RuntimeError("ui gone")

    assert _controller(FakeChannel(), status_sink=sink).tick() is not None


def test_disarm_sends_one_zero_thrust_command():
    ch = FakeChannel()
    ctl = _controller(ch)
    ctl.tick()
    ctl.tick()
    n = len(ch.messages)
    assert ctl.disarm()
    assert len(ch.messages) == n + 1
    last = parse_command(ch.messages[-1])
    assert (last.thrust, last.pitch, last.roll) == (0.0, 0.0, 0.0)


def test_set_setpoint_moves_image_axes():
    ctl = _controller(FakeChannel())
    ctl.set_setpoint(300.7, 150.2)
    ctl.set_depth_setpoint(900)
    assert ctl.lateral.setpoint == 300
    assert ctl.vertical.setpoint == 150
    assert ctl.depth.setpoint == 900.0


def test_lost_target_disarm_policy():
    now = {"t": 100.0}
    ch = FakeChannel()
    tr = TargetTracker()
    ctl = _controller(ch, tr, lost_policy=LostTargetPolicy(max_age_s=0.5, action="disarm"),
                      clock=lambda: now["t"])
    # never seen a target -> disarm
    assert ctl.tick().thrust == 0.0
    tr.update(Blob(x=262, y=300, area=10.0, depth=1200), now=100.0)
    now["t"] = 100.1
    cmd = ctl.tick()
    assert cmd.thrust == pytest.approx(0.634)
    assert ctl.vertical.derivative == 0.0
    now["t"] = 101.0
    assert ctl.tick().thrust == 0.0
    tr.update(Blob(x=262, y=300, area=10.0, depth=1200), now=101.0)
    assert ctl.tick().thrust == pytest.approx(0.634)


def test_lost_target_hold_policy_keeps_commanding():
    now = {"t": 0.0}
    tr = TargetTracker()
    tr.update(Blob(x=262, y=300, area=10.0, depth=1200), now=0.0)
    ctl = _controller(FakeChannel(), tr, lost_policy=LostTargetPolicy(max_age_s=0.1, action="hold"),
                      clock=lambda: now["t"])
    now["t"] = 10.0
    assert ctl.tick().thrust == pytest.approx(0.634)


class ListTelemetry:
    def __init__(self):
        self.rows = []

    def log(self, kind, payload):
        self.rows.append((kind, payload))


def test_telemetry_row_per_tick():
    tel = ListTelemetry()
    ctl = _controller(FakeChannel(), telemetry=tel)
    ctl.tick()
    kind, row = tel.rows[0]
    assert kind == "tick"
    assert row["vertical_error"] == pytest.approx(200 - 424)
    assert row["sent"] == 1 and row["tgt_seq"] == 0


def test_custom_axis_config():
    ch = FakeChannel()
    ctl = ServoController(TargetTracker(), ch, vertical=AxisCfg(bias=0.5), depth=AxisCfg(), lateral=AxisCfg())
    assert ctl.tick().thrust == pytest.approx(0.5)


def test_status_line_shows_roll_in_axis_sign():
    tr = TargetTracker()
    tr.update(Blob(x=162, y=200, area=10.0, depth=1200))
    ctl = _controller(FakeChannel(), tr)
    cmd = ctl.tick()
    assert cmd.roll == pytest.approx(-0.303)
    assert "Roll: 0.3030" in ctl.status_text
    ctl.disarm()
    assert "Roll: 0.0000" in ctl.status_text


def test_nothing_is_sent_after_disarm():
    ch = FakeChannel()
    ctl = _controller(ch)
    ctl.tick()
    assert ctl.disarm()
    n = len(ch.messages)
    assert ctl.tick() is None
    assert ctl.disarm() is False
    assert len(ch.messages) == n
    assert ctl.disarmed and ctl.suppressed == 1
    assert ctl.ticks == 1


class SlowTracker(TargetTracker):
    def __init__(self, delay_s):
        super().__init__()
        self.delay_s = delay_s
        self.entered = threading.Event()

    def read(self):
        self.entered.set()
        time.sleep(self.delay_s)
        return super().read()


def test_tick_still_running_at_stop_cannot_follow_the_disarm():
    ch = FakeChannel()
    tr = SlowTracker(0.3)
    ctl = _controller(ch, tr)
    s = ControlScheduler(0.01, ctl.tick, ctl.disarm)
    s.start()
    assert tr.entered.wait(2.0)
    s.stop(timeout=0.05)
    time.sleep(0.5)
    assert len(ch.messages) == 1
    last = parse_command(ch.messages[-1])
    assert (last.thrust, last.pitch, last.roll) == (0.0, 0.0, 0.0)
    assert ctl.suppressed >= 1
