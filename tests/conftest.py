import numpy as np
import pytest


def disc_depth(h=120, w=160, cx=80, cy=60, r=15, inside=1000, outside=3000):
    yy, xx = np.ogrid[:h, :w]
    img = np.full((h, w), outside, dtype=np.uint16)
    img[(xx - cx) ** 2 + (yy - cy) ** 2 <= r * r] = inside
    return img


@pytest.fixture
def disc():
    return disc_depth()
