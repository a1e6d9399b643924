import sys

import numpy as np
import pytest

from tryon_tracker.tracking.detectors import (
    MEDIAPIPE_INDEX,
    MediaPipePoseDetector,
    SyntheticPoseDetector,
    landmarks_from_mediapipe,
)
from tryon_tracker.tracking.landmarks import LandmarkId
from tryon_tracker.tracking.validation import validate_pose_quality


def test_synthetic_layout_is_frame_centred() -> None:
    detector = SyntheticPoseDetector(clock=lambda: 42.0)
    pose = detector(None, 400, 600)
    assert pose.timestamp == 42.0
    assert pose.confidence == pytest.approx(0.75)
    assert (pose.nose.x, pose.nose.y) == pytest.approx((200.0, 210.0))
    assert (pose.left_shoulder.x, pose.left_shoulder.y) == pytest.approx((150.0, 264.0))
    assert (pose.left_elbow.x, pose.left_elbow.y) == pytest.approx((110.0, 336.0))
    assert (pose.right_hip.x, pose.right_hip.y) == pytest.approx((200.0 + 100.0 / 3, 372.0))
    assert (pose.left_ankle.x, pose.left_ankle.y) == pytest.approx((180.0, 498.0))


def test_synthetic_pose_validates_cleanly() -> None:
    pose = SyntheticPoseDetector(clock=lambda: 0.0)(None, 400, 600)
    result = validate_pose_quality(pose, 400, 600)
    assert result.is_valid, result.issues


def test_synthetic_noise_is_seeded_and_offset_shifts_body() -> None:
    a = SyntheticPoseDetector(noise=3.0, rng=np.random.default_rng(7), clock=lambda: 0.0)
    b = SyntheticPoseDetector(noise=3.0, rng=np.random.default_rng(7), clock=lambda: 0.0)
    assert np.allclose(a(None, 400, 600).xy(), b(None, 400, 600).xy())

    still = SyntheticPoseDetector(clock=lambda: 0.0)
    base = still.layout(400, 600)
    still.offset = (20.0, -10.0)
    shifted = still.layout(400, 600)
    assert np.allclose(shifted.xy() - base.xy(), [20.0, -10.0])


def test_landmarks_from_mediapipe_maps_indices_to_pixels() -> None:
    raw = [(i / 100.0, i / 50.0, -0.01 * i, 0.5) for i in range(33)]
    raw[MEDIAPIPE_INDEX[LandmarkId.NOSE]] = (0.5, 0.2, 0.0, 1.4)
    pose = landmarks_from_mediapipe(raw, 400, 600, timestamp=3.0)
    assert pose is not None
    assert pose.timestamp == 3.0
    assert (pose.left_hip.x, pose.left_hip.y) == pytest.approx((92.0, 276.0))
    assert pose.left_hip.z == pytest.approx(-0.23)
    assert (pose.nose.x, pose.nose.y) == pytest.approx((200.0, 120.0))
    assert pose.nose.confidence == 1.0
    assert pose.confidence == pytest.approx((1.0 + 16 * 0.5) / 17)


def test_landmarks_from_mediapipe_needs_full_set() -> None:
    assert landmarks_from_mediapipe([(0.5, 0.5, 0.0, 1.0)] * 20, 400, 600) is None


def test_mediapipe_detector_reports_missing_extra(monkeypatch) -> None:
    monkeypatch.setitem(sys.modules, "mediapipe", None)
    with pytest.raises(ImportError, match="mediapipe"):
        MediaPipePoseDetector()
