"""Per-frame vision path: depth frame -> mask -> blobs -> target update."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from .blobs import Blob, extract_blobs
from .logutil import RateLimitedLog
from .masking import FrameMasker
from .target import TargetTracker

Buffer = Union[bytes, bytearray, memoryview, np.ndarray]


@dataclass(frozen=True)
class DepthFrame:
    """One sensor callback's worth of depth samples (uint16, millimetres, row-major)."""

    data: Buffer
    width: int
    height: int
    bytes_per_pixel: int = 2
    timestamp: float = 0.0

    def nbytes(self) -> int:
        d = self.data
        if isinstance(d, np.ndarray):
            return int(d.nbytes)
        return len(memoryview(d).cast("B"))

    def is_consistent(self) -> bool:
        return self.nbytes() == int(self.width) * int(self.height) * int(self.bytes_per_pixel)

    def samples(self) -> np.ndarray:
        """(height, width) uint16 view; only valid when is_consistent()."""
        d = self.data
        if isinstance(d, np.ndarray):
            arr = d if d.dtype == np.uint16 else d.view(np.uint16)
        else:
            arr = np.frombuffer(d, dtype=np.uint16)
        return arr.reshape(int(self.height), int(self.width))


@dataclass(frozen=True)
class ThresholdKnobs:
    min_depth: int = 500
    max_depth: int = 1500
    min_blob_area: float = 100.0
    max_blob_area: float = 20000.0


@dataclass
class FrameResult:
    """Outputs of one processed frame. viz/mask are reused buffers, valid until the next frame."""

    viz: np.ndarray
    mask: np.ndarray
    blobs: List[Blob] = field(default_factory=list)

    @property
    def target(self) -> Optional[Blob]:
        return self.blobs[0] if self.blobs else None


class VisionPipeline:
    """
    on_frame() is the sensor callback. It never raises; frames whose buffer
    does not match width*height*bytes_per_pixel (or the expected sensor size)
    are dropped without touching the tracker.
    """

    def __init__(
        self,
        tracker: TargetTracker,
        knobs: Optional[ThresholdKnobs] = None,
        *,
        expected_size: Optional[Tuple[int, int]] = None,
        on_result: Optional[Callable[[FrameResult], None]] = None,
    ):
        self.tracker = tracker
        self._knobs = knobs or ThresholdKnobs()
        self.expected_size = expected_size
        self.on_result = on_result
        self.masker = FrameMasker()

        self.frames = 0
        self.dropped_frames = 0
        self.frames_without_target = 0
        self._proc_lock = threading.Lock()
        self._drop_log = RateLimitedLog("vision", 2.0)

    @property
    def knobs(self) -> ThresholdKnobs:
        return self._knobs

    def set_knobs(self, knobs: ThresholdKnobs):
        self._knobs = knobs

    def on_frame(self, frame: DepthFrame) -> Optional[FrameResult]:
        try:
            return self._process(frame)
        except Exception as e:
            self.dropped_frames += 1
            self._drop_log(f"frame processing failed: {e} (dropped={self.dropped_frames})")
            return None

    def _accept(self, frame: DepthFrame) -> bool:
        if int(frame.bytes_per_pixel) != 2 or not frame.is_consistent():
            return False
        if self.expected_size is not None:
            ew, eh = self.expected_size
            if int(frame.width) != int(ew) or int(frame.height) != int(eh):
                return False
        return True

    def _process(self, frame: DepthFrame) -> Optional[FrameResult]:
        if not self._accept(frame):
            self.dropped_frames += 1
            self._drop_log(
                f"drop frame {frame.width}x{frame.height} bpp={frame.bytes_per_pixel} "
                f"bytes={frame.nbytes()} (dropped={self.dropped_frames})"
            )
            return None

        k = self._knobs
        with self._proc_lock:
            depth = frame.samples()
            viz, mask = self.masker.apply(depth, k.min_depth, k.max_depth)
            blobs = extract_blobs(mask, depth, k.min_blob_area, k.max_blob_area)
            self.frames += 1
            if blobs:
                self.tracker.update(blobs[0])
                self.frames_without_target = 0
            else:
                self.frames_without_target += 1
            res = FrameResult(viz=viz, mask=mask, blobs=blobs)

        if self.on_result is not None:
            try:
                self.on_result(res)
            except Exception as e:
                self._drop_log(f"result callback failed: {e}")
        return res
