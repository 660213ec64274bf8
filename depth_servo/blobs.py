"""Blob extraction from the binary depth mask (external contours + raster moments)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np


@dataclass(frozen=True)
class Blob:
    x: int
    y: int
    area: float
    depth: int

    @property
    def centroid(self) -> Tuple[int, int]:
        return self.x, self.y


def _find_external_contours(mask_u8: np.ndarray) -> list:
    fc = cv2.findContours(mask_u8, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if isinstance(fc, tuple) and int(len(fc)) == 3:
        _img, conts, _hier = fc
    else:
        conts, _hier = fc
    return list(conts or [])


def _centroid(cont: np.ndarray) -> Optional[Tuple[int, int]]:
    """Moment centroid truncated to int, or None for a zero-mass contour."""
    m = cv2.moments(cont)
    m00 = float(m.get("m00", 0.0))
    if abs(m00) <= 1e-6:
        return None
    return int(float(m["m10"]) / m00), int(float(m["m01"]) / m00)


def extract_blobs(
    mask: np.ndarray,
    depth: np.ndarray,
    min_area: float,
    max_area: float,
) -> List[Blob]:
    """
    Blobs for every external contour whose area lies strictly inside
    (min_area, max_area), in contour-extraction order. The first element is
    treated as the target by callers.

    `depth` is the uint16 image the mask was computed from; each blob carries
    the raw sample under its centroid.
    """
    m = np.asarray(mask, dtype=np.uint8)
    if m.ndim != 2 or int(m.size) <= 0:
        return []
    lo = float(min_area)
    hi = float(max_area)
    if not lo < hi:
        return []

    d = np.asarray(depth)
    H, W = m.shape
    out: List[Blob] = []
    for cont in _find_external_contours(m):
        area = float(cv2.contourArea(cont))
        if not (lo < area < hi):
            continue
        c = _centroid(cont)
        if c is None:
            continue
        x, y = c
        xi = min(max(x, 0), W - 1)
        yi = min(max(y, 0), H - 1)
        try:
            z = int(d[yi, xi])
        except (IndexError, ValueError, TypeError):
            z = 0
        out.append(Blob(x=x, y=y, area=area, depth=z))
    return out


def format_blob_info(blobs: Sequence[Blob]) -> str:
    lines: List[str] = []
    for i, b in enumerate(blobs):
        lines.append(f"Blob {i}: ")
        lines.append(f"Area: {int(b.area)}")
        lines.append(f"Center: {b.x}, {b.y}")
        lines.append("")
    return "\n".join(lines) + ("\n" if lines else "")
