import numpy as np

from depth_servo.pipeline import DepthFrame, ThresholdKnobs, VisionPipeline
from depth_servo.target import TargetTracker

from conftest import disc_depth

KNOBS = ThresholdKnobs(min_depth=500, max_depth=1500, min_blob_area=50.0, max_blob_area=50000.0)


def _frame(img, **kw):
    h, w = img.shape
    return DepthFrame(data=img.tobytes(), width=w, height=h, **kw)


def test_frame_updates_tracker_with_first_blob():
    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS)
    res = vp.on_frame(_frame(disc_depth(cx=100, cy=40)))
    assert res is not None and res.target is not None
    st = tr.read()
    assert abs(st.x - 100) <= 1 and abs(st.y - 40) <= 1 and st.z == 1000
    assert st.seq == 1
    assert vp.frames == 1 and vp.dropped_frames == 0


def test_ndarray_buffers_are_accepted():
    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS)
    img = disc_depth()
    assert vp.on_frame(DepthFrame(data=img, width=img.shape[1], height=img.shape[0])) is not None
    assert tr.read().seq == 1


def test_malformed_frame_has_no_side_effects():
    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS)
    before = tr.read()
    img = disc_depth()
    short = DepthFrame(data=img.tobytes()[:-2], width=img.shape[1], height=img.shape[0])
    assert vp.on_frame(short) is None
    wrong_bpp = DepthFrame(data=img.tobytes(), width=img.shape[1], height=img.shape[0] // 2, bytes_per_pixel=4)
    assert vp.on_frame(wrong_bpp) is None
    assert tr.read() is before
    assert vp.dropped_frames == 2 and vp.frames == 0


def test_unexpected_sensor_size_is_dropped():
    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS, expected_size=(512, 424))
    assert vp.on_frame(_frame(disc_depth())) is None
    assert tr.read().seq == 0


def test_no_blob_keeps_stale_target():
    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS)
    vp.on_frame(_frame(disc_depth()))
    seen = tr.read()
    empty = np.full((120, 160), 3000, dtype=np.uint16)
    res = vp.on_frame(_frame(empty))
    assert res is not None and res.blobs == []
    assert tr.read() is seen
    assert vp.frames_without_target == 1


def test_knobs_swap_at_runtime():
    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS)
    vp.set_knobs(ThresholdKnobs(min_depth=2000, max_depth=1000, min_blob_area=1, max_blob_area=10))
    res = vp.on_frame(_frame(disc_depth()))
    assert res is not None and res.blobs == []
    assert vp.knobs.min_depth == 2000


def test_result_callback_errors_are_contained():
    def boom(_res):
        raise RuntimeError("ui gone")

    tr = TargetTracker()
    vp = VisionPipeline(tr, KNOBS, on_result=boom)
    assert vp.on_frame(_frame(disc_depth())) is not None
    assert tr.read().seq == 1
