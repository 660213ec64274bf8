"""Fixed-period control tick on a dedicated thread, with a one-shot disarm on stop."""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable, Optional

from .logutil import RateLimitedLog, log


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    ARMED = "ARMED"
    STOPPED = "STOPPED"


class ControlScheduler:
    """
    Calls `tick_fn` every `period_s` seconds until stop().

    stop() is cooperative: the loop finishes the tick in progress, no further
    ticks are started, and then `disarm_fn` runs exactly once on the caller's
    thread before stop() returns. A stopped scheduler cannot be restarted.
    """

    def __init__(
        self,
        period_s: float,
        tick_fn: Callable[[], None],
        disarm_fn: Optional[Callable[[], None]] = None,
        *,
        name: str = "control-tick",
    ):
        period_s = float(period_s)
        if not period_s > 0.0:
            raise ValueError(f"period_s must be > 0 (got {period_s})")
        self.period_s = period_s
        self.tick_fn = tick_fn
        self.disarm_fn = disarm_fn
        self.name = str(name)
        self.ticks = 0
        self.missed = 0
        self.tick_errors = 0
        self._state = SchedulerState.IDLE
        self._lock = threading.Lock()
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._err_log = RateLimitedLog("sched", 1.0)

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self):
        with self._lock:
            if self._state != SchedulerState.IDLE:
                raise RuntimeError(f"scheduler cannot start from {self._state.value}")
            self._state = SchedulerState.ARMED
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        log("sched", f"armed period={self.period_s * 1000.0:.1f}ms")

    def stop(self, timeout: Optional[float] = 2.0):
        with self._lock:
            if self._state == SchedulerState.STOPPED:
                return
            was_armed = self._state == SchedulerState.ARMED
            self._state = SchedulerState.STOPPED
            self._stop_evt.set()
            th = self._thread
        if th is not None and th is not threading.current_thread():
            th.join(timeout=timeout)
            if th.is_alive():
                log("sched", "tick thread did not exit in time")
        if self.disarm_fn is not None:
            try:
                self.disarm_fn()
            except Exception as e:
                log("sched", f"disarm failed: {e}")
        log("sched", f"stopped ticks={self.ticks} missed={self.missed} armed={int(was_armed)}")

    def _run(self):
        period = self.period_s
        next_t = time.monotonic() + period
        while not self._stop_evt.is_set():
            delay = next_t - time.monotonic()
            if delay > 0.0 and self._stop_evt.wait(delay):
                break
            if self._stop_evt.is_set():
                break
            try:
                self.tick_fn()
            except Exception as e:
                self.tick_errors += 1
                self._err_log(f"tick error: {e} (errs={self.tick_errors})")
            self.ticks += 1
            next_t += period
            now = time.monotonic()
            if now > next_t:
                # Overran one or more slots: skip them instead of bursting.
                skipped = int((now - next_t) // period) + 1
                self.missed += skipped
                next_t += skipped * period
