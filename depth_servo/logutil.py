"""Console logging helpers (tagged, flushed prints; rate limited on hot paths)."""

from __future__ import annotations

import threading
import time
from typing import Optional


def log(tag: str, msg: str) -> None:
    try:
        print(f"[{tag}] {msg}", flush=True)
    except Exception:
        pass


class RateLimitedLog:
    """Print at most once per `interval_s`; suppressed lines are counted and reported."""

    def __init__(self, tag: str, interval_s: float = 1.0):
        self.tag = str(tag)
        self.interval_s = float(max(0.0, interval_s))
        self._lock = threading.Lock()
        self._last_t: Optional[float] = None
        self._suppressed = 0

    def __call__(self, msg: str, *, now: Optional[float] = None) -> bool:
        t = time.monotonic() if now is None else float(now)
        with self._lock:
            if self._last_t is not None and (t - self._last_t) < self.interval_s:
                self._suppressed += 1
                return False
            self._last_t = t
            suppressed = self._suppressed
            self._suppressed = 0
        if suppressed:
            msg = f"{msg} (+{suppressed} suppressed)"
        log(self.tag, msg)
        return True
