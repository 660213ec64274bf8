"""Latest primary-target position shared between the vision pipeline and the control loop."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Tuple

from .blobs import Blob

# Where the target is assumed to sit until the first frame arrives (image x, y; depth mm).
DEFAULT_TARGET: Tuple[int, int, int] = (262, 424, 1200)


@dataclass(frozen=True)
class TargetState:
    x: int
    y: int
    z: int
    seq: int = 0           # number of updates published so far (0 = initial guess)
    t: Optional[float] = None  # time.monotonic() of the update, None for the initial guess


class TargetTracker:
    """
    Single writer (frame callback), single reader (control tick).

    Every update builds a new immutable TargetState and publishes it with one
    attribute rebinding, so a reader always sees x, y and z from the same frame.
    No lock is needed for that guarantee under the GIL.
    """

    def __init__(self, initial: Tuple[int, int, int] = DEFAULT_TARGET):
        x, y, z = initial
        self._state = TargetState(int(x), int(y), int(z))

    def update(self, blob: Optional[Blob], *, now: Optional[float] = None) -> None:
        if blob is None:
            return
        prev = self._state
        t = time.monotonic() if now is None else float(now)
        self._state = TargetState(int(blob.x), int(blob.y), int(blob.depth), prev.seq + 1, t)

    def read(self) -> TargetState:
        return self._state

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the last update; inf if no frame has produced a target yet."""
        st = self._state
        if st.t is None:
            return float("inf")
        t = time.monotonic() if now is None else float(now)
        return max(0.0, t - st.t)
