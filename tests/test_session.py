import logging
import math

import numpy as np
import pytest

from tryon_tracker.tracking.config import TrackingConfig
from tryon_tracker.tracking.detectors import SyntheticPoseDetector
from tryon_tracker.tracking.landmarks import Landmark, LandmarkId, Pose
from tryon_tracker.tracking.recovery import TrackingState
from tryon_tracker.tracking.segmentation import Bounds
from tryon_tracker.tracking.session import TrackingSession

# Composite score of the synthetic pose with and without a static history.
FIRST_FRAME_SCORE = 0.4 * 12.2 / 17 + 0.3 + 0.2 * 0.5 + 0.1
STEADY_SCORE = 0.4 * 12.2 / 17 + 0.3 + 0.2 + 0.1


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class ScriptedDetector:
    """Returns the synthetic pose while ``script`` says so, then nothing."""

    def __init__(self, clock: FakeClock, script) -> None:
        self.inner = SyntheticPoseDetector(clock=clock)
        self.script = list(script)
        self.calls = 0

    def __call__(self, frame, width, height):
        visible = self.script[self.calls] if self.calls < len(self.script) else False
        self.calls += 1
        return self.inner(frame, width, height) if visible else None


def _spy_on_strategies(session, monkeypatch):
    calls = []
    manager = session.recovery
    for name in ("_predictive_recovery", "_neighbor_recovery"):
        real = getattr(manager, name)

        def spy(*args, _real=real, _name=name):
            calls.append(_name.strip("_").split("_")[0])
            return _real(*args)

        monkeypatch.setattr(manager, name, spy)
    return calls


def _run(session, clock, frames, step_ms=1000.0 / 30.0):
    results = []
    for _ in range(frames):
        results.append(session.process_frame(None, 400, 600))
        clock.now += step_ms
    return results


def test_steady_detections_are_tracked() -> None:
    clock = FakeClock()
    session = TrackingSession(SyntheticPoseDetector(clock=clock), clock=clock)
    results = _run(session, clock, 5)

    assert all(not r.tracking_lost and not r.recovered for r in results)
    assert not any(r.recovery_exhausted for r in results)
    assert results[0].confidence == pytest.approx(FIRST_FRAME_SCORE)
    assert results[-1].confidence == pytest.approx(STEADY_SCORE)
    assert results[0].corrections == []
    assert session.last_pose is results[-1].pose
    assert session.state is TrackingState.TRACKING
    assert session.frames_processed == 5
    assert session.recovery.last_valid_pose.confidence == pytest.approx(STEADY_SCORE)


def test_missing_detections_recover_by_prediction(monkeypatch) -> None:
    clock = FakeClock()
    session = TrackingSession(ScriptedDetector(clock, [True] * 3), clock=clock)
    calls = _spy_on_strategies(session, monkeypatch)
    results = _run(session, clock, 13, step_ms=600.0)

    lost_frames = results[3:]
    assert len(lost_frames) == 10
    for result in lost_frames:
        assert result.recovered
        assert result.recovery_strategy == "predictive"
        assert not result.tracking_lost
        assert result.confidence == pytest.approx(STEADY_SCORE)
    # Prediction is accepted every time, so later strategies never run.
    assert calls == ["predictive"] * 10
    assert session.recovery.recovery_attempts == 0


def test_strategies_run_in_order_until_one_is_accepted(monkeypatch) -> None:
    clock = FakeClock()
    session = TrackingSession(ScriptedDetector(clock, [True]), clock=clock)
    first = _run(session, clock, 1, step_ms=600.0)[0]
    calls = _spy_on_strategies(session, monkeypatch)

    previous = session.recovery.last_valid_pose
    result = session.process_frame(None, 400, 600)
    # One history entry is not enough to predict; neighbour recovery is accepted
    # but its confidence is too low to draw.
    assert calls == ["predictive", "neighbor"]
    assert result.recovered
    assert result.recovery_strategy == "neighbor"
    assert result.tracking_lost
    assert result.pose is None
    assert session.state is TrackingState.LOST
    assert session.last_pose is first.pose
    assert session.recovery.last_valid_pose is not previous
    assert session.recovery.last_valid_pose.confidence == pytest.approx(max(0.2, first.confidence * 0.5))


def test_cooldown_blocks_back_to_back_recovery() -> None:
    clock = FakeClock()
    session = TrackingSession(ScriptedDetector(clock, [True]), clock=clock)
    results = _run(session, clock, 4)
    assert results[1].recovery_strategy == "neighbor"
    assert results[2].recovery_strategy is None
    assert results[2].tracking_lost and not results[2].recovered


def test_detector_errors_are_treated_as_missing(caplog) -> None:
    def broken(frame, width, height):
        raise RuntimeError("camera unplugged")

    clock = FakeClock()
    session = TrackingSession(broken, clock=clock)
    with caplog.at_level(logging.WARNING, logger="tryon_tracker.tracking"):
        result = session.process_frame(None, 400, 600)
    assert "camera unplugged" in caplog.text
    assert result.tracking_lost
    assert result.recovery_strategy == "fallback"
    assert result.pose is None


def test_malformed_payloads_are_discarded(caplog) -> None:
    clock = FakeClock()
    session = TrackingSession(lambda frame, w, h: "not a pose", clock=clock)
    with caplog.at_level(logging.WARNING, logger="tryon_tracker.tracking"):
        result = session.process_frame()
    assert "Discarding unusable detector payload" in caplog.text
    assert result.tracking_lost


def test_smoothing_can_be_disabled() -> None:
    clock = FakeClock()
    session = TrackingSession(
        SyntheticPoseDetector(clock=clock),
        TrackingConfig(enable_tracking=False),
        clock=clock,
    )
    results = _run(session, clock, 3)
    assert len(session.history) == 0
    assert all(r.confidence == pytest.approx(FIRST_FRAME_SCORE) for r in results)


def test_min_confidence_gate() -> None:
    clock = FakeClock()
    session = TrackingSession(
        SyntheticPoseDetector(clock=clock),
        TrackingConfig(min_confidence=0.95, max_recovery_attempts=0),
        clock=clock,
    )
    result = session.process_frame(None, 400, 600)
    assert result.tracking_lost
    assert result.recovery_strategy is None
    assert result.recovery_exhausted


def test_session_segmentation_and_overlay_helpers() -> None:
    clock = FakeClock()
    session = TrackingSession(SyntheticPoseDetector(clock=clock), clock=clock)
    assert session.segment() is None
    assert session.overlay_constraints("tops").safe_zones == []
    assert session.check_overlay_conflicts(Bounds(0, 0, 10, 10), "tops").conflicts == []

    _run(session, clock, 2)
    mask = session.segment(400, 600)
    assert [s.id for s in mask.segments] == ["head", "torso", "leftArm", "rightArm", "leftLeg", "rightLeg"]
    assert session.segment(400, 600) is mask
    constraints = session.overlay_constraints("tops")
    assert [s.id for s in constraints.safe_zones] == ["torso", "leftArm", "rightArm"]
    head = mask.segment("head").bounds
    report = session.check_overlay_conflicts(head, "tops")
    assert [s.id for s in report.conflicts] == ["head"]
    assert report.recommended_adjustment is not None


def test_metrics_and_reset() -> None:
    clock = FakeClock()
    session = TrackingSession(SyntheticPoseDetector(clock=clock), clock=clock)
    _run(session, clock, 3)
    assert session.metrics().average_processing_time > 0.0

    session.reset()
    assert session.last_pose is None
    assert session.frames_processed == 0
    assert len(session.history) == 0
    assert session.recovery.last_valid_pose is None
    assert session.metrics().average_processing_time == 0.0


class CorruptingDetector:
    """Synthetic poses, with a NaN wrist on the listed (1-based) calls."""

    def __init__(self, clock: FakeClock, corrupt_calls) -> None:
        self.inner = SyntheticPoseDetector(clock=clock)
        self.corrupt_calls = set(corrupt_calls)
        self.calls = 0

    def __call__(self, frame, width, height):
        self.calls += 1
        pose = self.inner(frame, width, height)
        if self.calls in self.corrupt_calls:
            pose.left_wrist.x = float("nan")
        return pose


def test_non_finite_detector_poses_never_reach_history() -> None:
    clock = FakeClock()
    session = TrackingSession(CorruptingDetector(clock, {2}), clock=clock)
    results = _run(session, clock, 4)

    for result in results:
        assert result.pose is not None
        assert np.isfinite(result.pose.xy()).all()
        assert math.isfinite(result.confidence)
    assert len(session.history) == 4
    for pose in session.history:
        assert np.isfinite(pose.xy()).all()


def test_payloads_with_extra_landmark_names_are_tracked() -> None:
    clock = FakeClock()
    synthetic = SyntheticPoseDetector(clock=clock)

    def mediapipe_style(frame, width, height):
        pose = synthetic(frame, width, height)
        body = {lid.wire_name: (lm.x, lm.y, lm.confidence) for lid, lm in pose.items()}
        body["left_pinky"] = (0.0, 0.0, 0.9)
        body["right_foot_index"] = (1.0, 1.0, 0.9)
        return {"landmarks": body, "confidence": pose.confidence}

    session = TrackingSession(mediapipe_style, clock=clock)
    result = session.process_frame(None, 400, 600)
    assert not result.tracking_lost
    assert not result.recovered
    assert result.confidence == pytest.approx(FIRST_FRAME_SCORE)


def test_recovery_exhaustion_is_reported() -> None:
    clock = FakeClock()
    session = TrackingSession(ScriptedDetector(clock, [False] * 6 + [True]), clock=clock)
    # A collapsed last pose makes every strategy fail in a tiny frame.
    session.recovery.last_valid_pose = Pose(
        [Landmark(0.0, 0.0, None, 0.0) for _ in LandmarkId], confidence=0.6, timestamp=0.0
    )

    lost = []
    for _ in range(6):
        lost.append(session.process_frame(None, 10, 10))
        clock.now += 600.0
    assert all(r.tracking_lost and not r.recovered for r in lost)
    assert [r.recovery_exhausted for r in lost] == [False] * 4 + [True, True]
    assert lost[4].recovery_strategy == "fallback"
    assert lost[5].recovery_strategy is None
    assert session.recovery.recovery_attempts == 5

    found = session.process_frame(None, 400, 600)
    assert not found.tracking_lost
    assert not found.recovery_exhausted
    assert session.recovery.recovery_attempts == 0
