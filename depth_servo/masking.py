"""Depth frame -> 8-bit visualization + binary depth-band mask."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

# Map depth (mm) to a byte for display. Integer constant: 8000 // 256 == 31.
DEPTH_TO_BYTE = 8000 // 256

MASK_ON = 255
MASK_OFF = 0


def mask_depth(
    samples: np.ndarray,
    min_depth: int,
    max_depth: int,
    *,
    out_viz: Optional[np.ndarray] = None,
    out_mask: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return (viz_u8, mask_u8) for a uint16 depth image.

    viz  = (d // DEPTH_TO_BYTE) truncated to 8 bits. Depths above
           DEPTH_TO_BYTE*255 wrap around (d=7936 -> 0) instead of saturating.
    mask = 255 where min_depth <= d <= max_depth, else 0. An inverted band
           (min_depth > max_depth) selects nothing.
    """
    d = np.asarray(samples)
    if d.dtype != np.uint16:
        d = d.astype(np.uint16, copy=False)

    if out_viz is None or out_viz.shape != d.shape or out_viz.dtype != np.uint8:
        out_viz = np.empty(d.shape, dtype=np.uint8)
    if out_mask is None or out_mask.shape != d.shape or out_mask.dtype != np.uint8:
        out_mask = np.empty(d.shape, dtype=np.uint8)

    np.copyto(out_viz, (d // DEPTH_TO_BYTE) & 0xFF, casting="unsafe")

    # Knobs may be out of uint16 range; clamp before comparing against the samples.
    lo = max(0, int(min_depth))
    hi = min(0xFFFF, int(max_depth))
    out_mask.fill(MASK_OFF)
    if lo <= hi:
        out_mask[(d >= lo) & (d <= hi)] = MASK_ON
    return out_viz, out_mask


class FrameMasker:
    """Reuses its output buffers across frames of the same size."""

    def __init__(self):
        self._viz: Optional[np.ndarray] = None
        self._mask: Optional[np.ndarray] = None

    def apply(self, samples: np.ndarray, min_depth: int, max_depth: int) -> Tuple[np.ndarray, np.ndarray]:
        self._viz, self._mask = mask_depth(
            samples, min_depth, max_depth, out_viz=self._viz, out_mask=self._mask
        )
        return self._viz, self._mask
