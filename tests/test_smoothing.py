import numpy as np
import pytest

from tryon_tracker.tracking.benchmark import mock_pose
from tryon_tracker.tracking.config import TrackingConfig
from tryon_tracker.tracking.landmarks import LandmarkId, PoseHistory
from tryon_tracker.tracking.smoothing import TemporalSmoother, damping_factors, smooth_pose


def _shifted(pose, dx: float, *, timestamp: float):
    moved = pose.copy(timestamp=timestamp)
    for landmark in moved.landmarks:
        landmark.x += dx
    return moved


def test_first_pose_passes_through_and_seeds_history() -> None:
    history = PoseHistory()
    pose = mock_pose(0, timestamp=0.0)
    smoothed = smooth_pose(pose, history, now_ms=0.0)
    assert np.allclose(smoothed.xy(), pose.xy())
    assert len(history) == 1
    assert smoothed is not pose


def test_static_sequence_is_unchanged() -> None:
    history = PoseHistory()
    base = mock_pose(0, timestamp=0.0)
    for i in range(10):
        frame = base.copy(timestamp=i * 33.0)
        smoothed = smooth_pose(frame, history, now_ms=i * 33.0)
        assert np.allclose(smoothed.xy(), base.xy())


def test_sub_threshold_movement_is_snapped_back() -> None:
    history = PoseHistory()
    first = mock_pose(0, timestamp=0.0)
    smooth_pose(first, history, now_ms=0.0)

    jittered = _shifted(first, 5.0, timestamp=33.0)
    smoothed = smooth_pose(jittered, history, now_ms=33.0)
    assert np.allclose(smoothed.xy(), first.xy())


def test_large_movement_is_followed_with_lag() -> None:
    history = PoseHistory()
    first = mock_pose(0, timestamp=0.0)
    smooth_pose(first, history, now_ms=0.0)

    moved = _shifted(first, 50.0, timestamp=100.0)
    smoothed = smooth_pose(moved, history, now_ms=100.0)
    dx = smoothed.nose.x - first.nose.x
    # Weight 0.7 * recency 0.9 pulls 63% of the way back toward the previous pose.
    assert dx == pytest.approx(50.0 * (1 - 0.63))
    assert 0.0 < dx < 50.0


def test_confidence_keeps_historical_maximum() -> None:
    history = PoseHistory()
    confident = mock_pose(0, timestamp=0.0)
    confident.left_wrist.confidence = 0.95
    smooth_pose(confident, history, now_ms=0.0)

    weak = mock_pose(0, timestamp=33.0)
    weak.left_wrist.confidence = 0.2
    smoothed = smooth_pose(weak, history, now_ms=33.0)
    assert smoothed[LandmarkId.LEFT_WRIST].confidence == pytest.approx(0.95)


def test_stale_history_is_pruned_before_blending() -> None:
    config = TrackingConfig(temporal_window_size=1)
    history = PoseHistory()
    first = mock_pose(0, timestamp=0.0)
    smooth_pose(first, history, config, now_ms=0.0)

    moved = _shifted(first, 50.0, timestamp=500.0)
    smoothed = smooth_pose(moved, history, config, now_ms=500.0)
    assert np.allclose(smoothed.xy(), moved.xy())
    assert len(history) == 1


def test_fast_landmarks_are_damped_less() -> None:
    still = PoseHistory([mock_pose(0, timestamp=0.0)])
    assert np.allclose(damping_factors(still), 1.0)

    moving = PoseHistory([mock_pose(0, timestamp=0.0), _shifted(mock_pose(0), 250.0, timestamp=1.0)])
    assert np.allclose(damping_factors(moving), 0.5)

    racing = PoseHistory([mock_pose(0, timestamp=0.0), _shifted(mock_pose(0), 1000.0, timestamp=1.0)])
    assert np.allclose(damping_factors(racing), 0.3)


def test_temporal_smoother_uses_injected_clock() -> None:
    now = {"t": 0.0}
    smoother = TemporalSmoother(clock=lambda: now["t"])
    base = mock_pose(0, timestamp=0.0)
    smoother.smooth(base)
    now["t"] = 33.0
    out = smoother.smooth(_shifted(base, 3.0, timestamp=33.0))
    assert np.allclose(out.xy(), base.xy())
    smoother.reset()
    assert len(smoother.history) == 0
