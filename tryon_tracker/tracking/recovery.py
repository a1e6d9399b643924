"""Tracking-loss recovery state machine.

When the detector misses a frame (or returns a weak pose) the session asks the
`PoseRecoveryManager` for a stand-in. Attempts are rate limited by a cooldown,
and after ``max_recovery_attempts`` consecutive failures the session stops
asking until a real detection resets the counter.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger, TrackingConfig
from tryon_tracker.tracking.landmarks import (
    Landmark,
    LandmarkId,
    Pose,
    PoseHistory,
    estimate_velocities,
    monotonic_ms,
)
from tryon_tracker.tracking.validation import validate_pose_quality

FALLBACK_LANDMARK_CONFIDENCE = 0.2
FALLBACK_POSE_CONFIDENCE = 0.1

# (dx from frame centre, y as a fraction of frame height) per landmark.
_FALLBACK_LAYOUT = {
    LandmarkId.NOSE: (0.0, 0.25),
    LandmarkId.LEFT_EYE: (-10.0, 0.23),
    LandmarkId.RIGHT_EYE: (10.0, 0.23),
    LandmarkId.LEFT_EAR: (-20.0, 0.25),
    LandmarkId.RIGHT_EAR: (20.0, 0.25),
    LandmarkId.LEFT_SHOULDER: (-60.0, 0.35),
    LandmarkId.RIGHT_SHOULDER: (60.0, 0.35),
    LandmarkId.LEFT_ELBOW: (-80.0, 0.45),
    LandmarkId.RIGHT_ELBOW: (80.0, 0.45),
    LandmarkId.LEFT_WRIST: (-70.0, 0.55),
    LandmarkId.RIGHT_WRIST: (70.0, 0.55),
    LandmarkId.LEFT_HIP: (-50.0, 0.5),
    LandmarkId.RIGHT_HIP: (50.0, 0.5),
    LandmarkId.LEFT_KNEE: (-45.0, 0.65),
    LandmarkId.RIGHT_KNEE: (45.0, 0.65),
    LandmarkId.LEFT_ANKLE: (-40.0, 0.8),
    LandmarkId.RIGHT_ANKLE: (40.0, 0.8),
}

# (source, target, dx, dy, confidence) for limb joints rebuilt from a confident anchor.
_LIMB_OFFSETS = (
    (LandmarkId.LEFT_SHOULDER, LandmarkId.LEFT_ELBOW, -40.0, 80.0, 0.4),
    (LandmarkId.LEFT_SHOULDER, LandmarkId.LEFT_WRIST, -30.0, 150.0, 0.3),
    (LandmarkId.RIGHT_SHOULDER, LandmarkId.RIGHT_ELBOW, 40.0, 80.0, 0.4),
    (LandmarkId.RIGHT_SHOULDER, LandmarkId.RIGHT_WRIST, 30.0, 150.0, 0.3),
    (LandmarkId.LEFT_HIP, LandmarkId.LEFT_KNEE, -10.0, 100.0, 0.4),
    (LandmarkId.LEFT_HIP, LandmarkId.LEFT_ANKLE, -15.0, 200.0, 0.3),
    (LandmarkId.RIGHT_HIP, LandmarkId.RIGHT_KNEE, 10.0, 100.0, 0.4),
    (LandmarkId.RIGHT_HIP, LandmarkId.RIGHT_ANKLE, 15.0, 200.0, 0.3),
)

SOURCE_CONFIDENCE_THRESHOLD = 0.5
PREDICTION_HORIZON_MS = 100.0


class TrackingState(str, Enum):
    TRACKING = "tracking"
    LOST = "lost"


def fallback_pose(frame_width: float, frame_height: float, *, timestamp: float | None = None) -> Pose:
    """Fixed upright layout centred in the frame with uniformly low confidence."""
    center_x = frame_width / 2.0
    landmarks = [
        Landmark(center_x + dx, frame_height * fy, None, FALLBACK_LANDMARK_CONFIDENCE)
        for dx, fy in (_FALLBACK_LAYOUT[landmark_id] for landmark_id in LandmarkId)
    ]
    return Pose(
        landmarks,
        confidence=FALLBACK_POSE_CONFIDENCE,
        timestamp=monotonic_ms() if timestamp is None else timestamp,
    )


class PoseRecoveryManager:
    """Produces stand-in poses while tracking is lost."""

    def __init__(
        self,
        config: Optional[TrackingConfig] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.config = config or TrackingConfig()
        self._clock = clock
        self.last_valid_pose: Optional[Pose] = None
        self.recovery_attempts = 0
        self.last_recovery_time: Optional[float] = None
        self.state = TrackingState.TRACKING
        self.last_strategy: Optional[str] = None

    def recover_pose(
        self,
        frame: Any,
        frame_width: float,
        frame_height: float,
        history: Sequence[Pose] | PoseHistory | None = None,
    ) -> Optional[Pose]:
        """Try predictive, neighbour-based and fallback recovery in that order.

        ``frame`` is accepted for interface parity with the detector and is not
        inspected. Returns None while the cooldown is active or when every
        strategy is rejected.
        """
        now = self._clock()
        self.last_strategy = None
        if self.last_recovery_time is not None and now - self.last_recovery_time < self.config.recovery_cooldown_ms:
            return None
        self.last_recovery_time = now
        self.state = TrackingState.LOST

        if self.last_valid_pose is None:
            self.last_strategy = "fallback"
            logger.debug("No previous valid pose; returning fallback pose")
            return fallback_pose(frame_width, frame_height, timestamp=now)

        poses = list(history or [])
        strategies = (
            ("predictive", lambda: self._predictive_recovery(poses, now)),
            ("neighbor", lambda: self._neighbor_recovery(now)),
            ("fallback", lambda: fallback_pose(frame_width, frame_height, timestamp=now)),
        )
        for name, strategy in strategies:
            self.last_strategy = name
            candidate = strategy()
            if candidate is None:
                logger.debug("Recovery strategy %s not applicable", name)
                continue
            quality = validate_pose_quality(candidate, frame_width, frame_height, poses).quality_score
            logger.debug("Recovery strategy %s produced quality %.3f", name, quality)
            if quality > self.config.recovery_quality_threshold:
                self.last_valid_pose = candidate.copy()
                self.recovery_attempts = 0
                self.state = TrackingState.TRACKING
                return candidate

        self.recovery_attempts += 1
        if not self.should_attempt_recovery():
            logger.warning("Pose recovery exhausted after %s attempts", self.recovery_attempts)
        return None

    def _predictive_recovery(self, history: List[Pose], now: float) -> Optional[Pose]:
        if self.last_valid_pose is None or len(history) < 2:
            return None
        velocities = estimate_velocities(history[-3:])
        if velocities is None:
            return None
        last = self.last_valid_pose
        elapsed = now - last.timestamp
        factor = min(elapsed / PREDICTION_HORIZON_MS, 1.0)
        predicted = last.copy(confidence=max(0.3, last.confidence * 0.7), timestamp=now)
        for landmark_id, landmark in predicted.items():
            vx, vy = velocities[landmark_id]
            landmark.x += float(vx) * elapsed * factor
            landmark.y += float(vy) * elapsed * factor
            landmark.confidence *= 0.8
        return predicted

    def _neighbor_recovery(self, now: float) -> Optional[Pose]:
        if self.last_valid_pose is None:
            return None
        last = self.last_valid_pose
        recovered = last.copy(confidence=max(0.2, last.confidence * 0.5), timestamp=now)

        nose = recovered.nose
        if nose.confidence > SOURCE_CONFIDENCE_THRESHOLD:
            face_width = abs(recovered.right_shoulder.x - recovered.left_shoulder.x) * 0.3
            recovered.left_eye = Landmark(nose.x - face_width * 0.2, nose.y - 15.0, None, 0.4)
            recovered.right_eye = Landmark(nose.x + face_width * 0.2, nose.y - 15.0, None, 0.4)
            recovered.left_ear = Landmark(nose.x - face_width * 0.4, nose.y, None, 0.3)
            recovered.right_ear = Landmark(nose.x + face_width * 0.4, nose.y, None, 0.3)

        for source_id, target_id, dx, dy, confidence in _LIMB_OFFSETS:
            source = recovered[source_id]
            if source.confidence > SOURCE_CONFIDENCE_THRESHOLD:
                recovered[target_id] = Landmark(source.x + dx, source.y + dy, None, confidence)
        return recovered

    def update_valid_pose(self, pose: Pose) -> None:
        self.last_valid_pose = pose.copy()
        self.recovery_attempts = 0
        self.state = TrackingState.TRACKING

    def mark_lost(self) -> None:
        self.state = TrackingState.LOST

    def should_attempt_recovery(self) -> bool:
        return self.recovery_attempts < self.config.max_recovery_attempts

    def reset(self) -> None:
        self.last_valid_pose = None
        self.recovery_attempts = 0
        self.last_recovery_time = None
        self.state = TrackingState.TRACKING
        self.last_strategy = None


__all__ = ["TrackingState", "PoseRecoveryManager", "fallback_pose"]
