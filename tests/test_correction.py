import pytest

from tryon_tracker.tracking.benchmark import mock_pose
from tryon_tracker.tracking.correction import ANATOMICAL_CONSTRAINTS, PoseCorrectionEngine


@pytest.fixture
def engine() -> PoseCorrectionEngine:
    return PoseCorrectionEngine()


def test_clean_pose_is_boosted_not_corrected(engine) -> None:
    pose = mock_pose(0)
    result = engine.validate_and_correct_pose(pose)
    assert result.corrections == []
    assert not result.corrected
    assert result.corrected_pose is not pose
    assert result.corrected_pose.confidence == pytest.approx(0.85 * 1.1)
    assert pose.confidence == pytest.approx(0.85)


def test_confidence_never_rises_for_invalid_poses(engine) -> None:
    pose = mock_pose(0)
    for landmark in pose.landmarks:
        landmark.y = 600.0 - landmark.y
    result = engine.validate_and_correct_pose(pose)
    assert result.corrections == []
    assert result.corrected_pose.confidence == pytest.approx(pose.confidence)


def test_boost_is_judged_against_the_callers_frame(engine) -> None:
    pose = mock_pose(0)
    # Centred at x=200, the pose is far off-centre in a 1600 px wide frame.
    wide = engine.validate_and_correct_pose(pose, frame_width=1600, frame_height=600)
    assert wide.corrections == []
    assert wide.corrected_pose.confidence == pytest.approx(0.85)

    native = engine.validate_and_correct_pose(pose, frame_width=400, frame_height=600)
    assert native.corrected_pose.confidence == pytest.approx(0.85 * 1.1)


def test_narrow_hips_are_widened_around_their_center(engine) -> None:
    pose = mock_pose(0)
    pose.left_hip.x = 180.0
    pose.right_hip.x = 220.0
    result = engine.validate_and_correct_pose(pose)
    assert result.corrections == ["Corrected shoulder-to-hip ratio from 2.50 to 1.20"]
    hips = result.corrected_pose
    assert hips.right_hip.x - hips.left_hip.x == pytest.approx(100.0 / 1.2)
    assert (hips.left_hip.x + hips.right_hip.x) / 2 == pytest.approx(200.0)
    assert hips.left_hip.confidence == pytest.approx(0.81)
    assert result.corrected_pose.confidence == pytest.approx(0.85 * 0.95 * 1.1)
    # The caller's pose is left untouched.
    assert pose.left_hip.x == 180.0


def test_short_legs_are_extended(engine) -> None:
    pose = mock_pose(0)
    pose.left_ankle.y = 400.0
    pose.right_ankle.y = 400.0
    result = engine.validate_and_correct_pose(pose)
    assert result.corrections[0] == "Corrected torso-to-leg ratio from 2.00 to 0.90"
    corrected = result.corrected_pose
    assert corrected.left_ankle.y == pytest.approx(350.0 + 100.0 / 0.9)
    assert corrected.right_knee.y == pytest.approx(350.0 + 50.0 / 0.9)
    assert corrected.left_ankle.confidence == pytest.approx(0.7 * 0.8)


def test_uneven_shoulders_are_levelled(engine) -> None:
    pose = mock_pose(0)
    pose.left_shoulder.y = 210.0
    result = engine.validate_and_correct_pose(pose)
    assert result.corrections == ["Corrected leftShoulder/rightShoulder vertical alignment (diff: 40.0px)"]
    corrected = result.corrected_pose
    assert corrected.left_shoulder.y == pytest.approx(230.0)
    assert corrected.right_shoulder.y == pytest.approx(230.0)


def test_sudden_movement_is_capped_against_history(engine) -> None:
    previous = mock_pose(0)
    jumped = mock_pose(0, center=(350.0, 300.0))
    result = engine.validate_and_correct_pose(jumped, [previous])
    assert len(result.corrections) == 17
    assert result.corrections[0] == "Dampened sudden movement for nose (150.0px)"
    for before, after in zip(previous.landmarks, result.corrected_pose.landmarks):
        assert after.x - before.x == pytest.approx(100.0)
    # Penalty floors at 0.3 once many corrections are applied.
    assert result.corrected_pose.confidence == pytest.approx(0.85 * 0.3 * 1.1)

    assert engine.validate_and_correct_pose(jumped, []).corrections == []


def test_interpolates_weak_nose_from_eyes(engine) -> None:
    pose = mock_pose(0)
    pose.nose.confidence = 0.2
    out = engine.interpolate_missing_landmarks(pose)
    assert (out.nose.x, out.nose.y) == pytest.approx((200.0, 170.0))
    assert out.nose.confidence == pytest.approx(0.85 * 0.8)
    assert pose.nose.confidence == pytest.approx(0.2)


def test_interpolates_weak_shoulder_from_hip_and_nose(engine) -> None:
    pose = mock_pose(0)
    pose.left_shoulder.confidence = 0.3
    out = engine.interpolate_missing_landmarks(pose)
    assert (out.left_shoulder.x, out.left_shoulder.y) == pytest.approx((150.0, 280.0))
    assert out.left_shoulder.confidence == pytest.approx(0.72)
    assert out.right_shoulder.x == pytest.approx(250.0)


def test_interpolation_skips_weak_sources(engine) -> None:
    pose = mock_pose(0)
    pose.nose.confidence = 0.2
    pose.left_eye.confidence = 0.6
    out = engine.interpolate_missing_landmarks(pose)
    assert out.nose.confidence == pytest.approx(0.2)
    assert out.nose.y == pytest.approx(200.0)


def test_constraint_table() -> None:
    assert set(ANATOMICAL_CONSTRAINTS) == {"shoulder_to_hip", "torso_to_leg", "arm_span", "head_to_torso"}
    assert ANATOMICAL_CONSTRAINTS["shoulder_to_hip"].contains(1.2)
    assert not ANATOMICAL_CONSTRAINTS["torso_to_leg"].contains(1.5)
