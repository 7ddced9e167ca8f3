"""Unit tests for the tracker pool manager."""
from __future__ import annotations

import numpy as np
import pytest

from src.core.contracts import Detection, Rect
from src.tracking.tracker_manager import KalmanTrackerManager, TrackerConfig


def _det(cx, cy, w=50.0, h=50.0, conf=0.9) -> Detection:
    box = Rect.from_center(cx, cy, w, h)
    return Detection(0, "ball", conf, box, box.normalized(1000, 1000))


def _ids(manager: KalmanTrackerManager) -> list:
    return [t.id for t in manager.trackers]


@pytest.fixture()
def manager() -> KalmanTrackerManager:
    return KalmanTrackerManager()


# ── Config ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("kwargs", [
    {"max_age": -1},
    {"min_hits": 0},
    {"iou_threshold": 1.5},
    {"fallback_frame_width": 0},
])
def test_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        TrackerConfig(**kwargs)


def test_frame_size_defaults_to_fallback(manager):
    assert (manager.frame_width, manager.frame_height) == (1178, 1572)


def test_invalid_frame_size_is_ignored(manager):
    manager.set_frame_size(640, 480)
    manager.set_frame_size(0, 480)
    assert (manager.frame_width, manager.frame_height) == (640, 480)


# ── First frame ───────────────────────────────────────────────────────────────

def test_empty_pool_returns_raw_detections(manager):
    detections = [_det(100, 100), _det(400, 400)]
    out = manager.update(detections)
    assert out == detections
    assert _ids(manager) == [1, 2]


def test_filter_first_frame_returns_track_boxes():
    manager = KalmanTrackerManager(TrackerConfig(filter_first_frame=True))
    manager.set_frame_size(200, 200)
    det = _det(100, 100)

    out = manager.update([det])

    assert len(out) == 1
    assert out[0].box == det.box
    assert out[0].box_normalized == Rect(0.375, 0.375, 0.625, 0.625)


# ── Lifecycle scenarios ───────────────────────────────────────────────────────

def test_track_follows_detection_then_coasts_then_expires(manager):
    out = manager.update([_det(100, 100)])
    assert len(out) == 1
    assert _ids(manager) == [1]
    assert manager.trackers[0].confirmed

    out = manager.update([_det(105, 100)])
    assert len(out) == 1
    assert _ids(manager) == [1]
    vx, _ = manager.trackers[0].velocity
    assert vx != 0.0

    before = manager.trackers[0].bounding_box.center[0]
    out = manager.predict()
    assert len(out) == 1
    assert out[0].box.center[0] > before

    for _ in range(29):
        assert len(manager.predict()) == 1
    assert manager.predict() == []
    assert manager.trackers == []


def test_unmatched_detection_spawns_next_id(manager):
    manager.update([_det(100, 100)])

    near = _det(105, 100)
    far = _det(400, 400)
    assert near.box.iou(far.box) == 0.0

    out = manager.update([far, near])

    assert len(out) == 2
    assert _ids(manager) == [1, 2]
    t1, t2 = manager.trackers
    assert t1.hits == 2
    assert t2.hits == 1
    assert t2.bounding_box.center == pytest.approx((400.0, 400.0))


def test_ids_are_never_reused():
    manager = KalmanTrackerManager(TrackerConfig(max_age=2))
    manager.update([_det(100, 100)])
    for _ in range(3):
        manager.predict()
    assert manager.trackers == []

    manager.update([_det(100, 100)])
    assert _ids(manager) == [2]
    assert manager.ids_issued == 2


def test_clear_resets_ids(manager):
    manager.update([_det(100, 100), _det(400, 400)])
    manager.clear()
    assert manager.trackers == []
    assert manager.track_count == 0

    manager.update([_det(100, 100)])
    assert _ids(manager) == [1]


# ── Association ───────────────────────────────────────────────────────────────

def test_each_track_and_detection_matched_at_most_once(manager):
    manager.update([_det(100, 100), _det(300, 300)])

    # Both detections overlap track 1 only
    manager.update([_det(101, 100), _det(99, 100)])

    hits = {t.id: t.hits for t in manager.trackers}
    assert hits == {1: 2, 2: 1, 3: 1}
    assert manager.trackers[1].time_since_update == 1


def test_greedy_prefers_highest_iou(manager):
    manager.update([_det(100, 100), _det(140, 100)])

    manager.update([_det(135, 100), _det(105, 100)])

    assert _ids(manager) == [1, 2]
    t1, t2 = manager.trackers
    assert t1.x[0] == pytest.approx(102.5)
    assert t2.x[0] == pytest.approx(137.5)


def test_greedy_match_is_not_globally_optimal(manager):
    iou = np.array([
        [0.9, 0.8],
        [0.85, 0.0],
    ])
    assert manager._greedy_match(iou) == [(0, 0)]


def test_greedy_match_ignores_pairs_at_threshold(manager):
    iou = np.array([[0.1, 0.05]])
    assert manager._greedy_match(iou) == []


def test_unmatched_track_is_predicted(manager):
    manager.update([_det(100, 100), _det(400, 400)])

    manager.update([_det(102, 100)])

    t1, t2 = manager.trackers
    assert t1.time_since_update == 0
    assert t1.age == 1
    assert t2.time_since_update == 1
    assert t2.age == 2


# ── Output ────────────────────────────────────────────────────────────────────

def test_update_with_no_detections_matches_predict():
    a = KalmanTrackerManager()
    b = KalmanTrackerManager()
    for m in (a, b):
        m.update([_det(100, 100), _det(400, 400)])
        m.update([_det(104, 102), _det(398, 401)])

    assert a.update([]) == b.predict()


def test_stale_track_never_output():
    manager = KalmanTrackerManager(TrackerConfig(max_age=3))
    manager.update([_det(100, 100)])

    outputs = [manager.predict() for _ in range(6)]

    assert [len(out) for out in outputs] == [1, 1, 1, 0, 0, 0]


def test_stale_track_removed_during_update():
    manager = KalmanTrackerManager(TrackerConfig(max_age=1))
    manager.update([_det(100, 100)])
    manager.update([_det(500, 500)])
    out = manager.update([_det(500, 500)])

    assert len(out) == 1
    assert out[0].box.center == pytest.approx((500.0, 500.0))
    assert _ids(manager) == [2]


def test_unconfirmed_tracks_are_not_output():
    manager = KalmanTrackerManager(TrackerConfig(min_hits=2))
    manager.update([_det(100, 100)])

    assert manager.predict() == []
    assert manager.track_count == 0

    out = manager.update([_det(102, 100)])
    assert len(out) == 1
    assert manager.track_count == 1


def test_get_tracked_boxes_does_not_advance_state(manager):
    manager.update([_det(100, 100)])
    manager.update([_det(105, 100)])
    age = manager.trackers[0].age

    first = manager.get_tracked_boxes()
    second = manager.get_tracked_boxes()

    assert first == second
    assert manager.trackers[0].age == age
    assert manager.trackers[0].time_since_update == 0


def test_output_is_normalized_by_frame_size(manager):
    manager.set_frame_size(200, 400)
    manager.update([_det(100, 100)])

    box = manager.get_tracked_boxes()[0]

    assert box.box_normalized.left == pytest.approx(0.375)
    assert box.box_normalized.top == pytest.approx(0.1875)


def test_new_track_coasts_in_its_first_mixed_cycle(manager):
    manager.update([_det(100, 100)])

    manager.update([_det(100, 100), _det(500, 500)])

    t1, t2 = manager.trackers
    assert t1.time_since_update == 0
    assert t2.time_since_update == 1
    assert t2.age == 2
    assert t2.P[0, 0] == pytest.approx(110.0)

    manager.update([_det(100, 100), _det(510, 500)])
    assert t2.x[0] == pytest.approx(500 + 110.0 / 120.0 * 10)


def test_new_track_from_mixed_cycle_expires_one_frame_earlier():
    manager = KalmanTrackerManager(TrackerConfig(max_age=2))
    manager.update([_det(100, 100)])
    manager.update([_det(100, 100), _det(500, 500)])

    manager.predict()
    assert _ids(manager) == [1, 2]
    manager.predict()
    assert _ids(manager) == [1]
