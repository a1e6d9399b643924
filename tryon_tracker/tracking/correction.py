"""Anatomical, symmetry and temporal corrections for detected poses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger, TrackingConfig
from tryon_tracker.tracking.landmarks import (
    SYMMETRY_PAIRS,
    Landmark,
    LandmarkId,
    Pose,
    PoseHistory,
    midpoint_y,
)
from tryon_tracker.tracking.validation import validate_pose_quality


@dataclass(frozen=True)
class RatioConstraint:
    min: float
    max: float
    ideal: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


ANATOMICAL_CONSTRAINTS: Dict[str, RatioConstraint] = {
    "shoulder_to_hip": RatioConstraint(0.8, 1.6, 1.2),
    "torso_to_leg": RatioConstraint(0.6, 1.2, 0.9),
    "arm_span": RatioConstraint(0.9, 1.3, 1.1),
    "head_to_torso": RatioConstraint(0.15, 0.25, 0.2),
}

SYMMETRY_TOLERANCE = 30.0
MAX_FRAME_DISPLACEMENT = 100.0
CORRECTION_PENALTY = 0.05
MIN_CORRECTION_FACTOR = 0.3
CLEAN_POSE_BOOST = 1.1

INTERPOLATION_TARGET_THRESHOLD = 0.5
INTERPOLATION_SOURCE_THRESHOLD = 0.7
INTERPOLATION_CONFIDENCE_SCALE = 0.8


@dataclass
class CorrectionResult:
    corrected_pose: Pose
    corrections: List[str] = field(default_factory=list)

    @property
    def corrected(self) -> bool:
        return bool(self.corrections)


def _correct_shoulder_hip(pose: Pose, corrections: List[str]) -> None:
    constraint = ANATOMICAL_CONSTRAINTS["shoulder_to_hip"]
    shoulder_width = abs(pose.right_shoulder.x - pose.left_shoulder.x)
    hip_width = abs(pose.right_hip.x - pose.left_hip.x)
    if shoulder_width <= 0 or hip_width <= 0:
        return
    ratio = shoulder_width / hip_width
    if constraint.contains(ratio):
        return

    corrections.append(f"Corrected shoulder-to-hip ratio from {ratio:.2f} to {constraint.ideal:.2f}")
    target_width = shoulder_width / constraint.ideal
    center_x = (pose.left_hip.x + pose.right_hip.x) / 2.0
    pose.left_hip.x = center_x - target_width / 2.0
    pose.right_hip.x = center_x + target_width / 2.0
    pose.left_hip.confidence *= 0.9
    pose.right_hip.confidence *= 0.9


def _correct_torso_leg(pose: Pose, corrections: List[str]) -> None:
    constraint = ANATOMICAL_CONSTRAINTS["torso_to_leg"]
    hip_center_y = midpoint_y(pose.left_hip, pose.right_hip)
    torso_height = abs(midpoint_y(pose.left_shoulder, pose.right_shoulder) - hip_center_y)
    leg_height = abs(hip_center_y - midpoint_y(pose.left_ankle, pose.right_ankle))
    if torso_height <= 0 or leg_height <= 0:
        return
    ratio = torso_height / leg_height
    if constraint.contains(ratio):
        return

    corrections.append(f"Corrected torso-to-leg ratio from {ratio:.2f} to {constraint.ideal:.2f}")
    target_leg = torso_height / constraint.ideal
    for ankle in (pose.left_ankle, pose.right_ankle):
        ankle.y = hip_center_y + target_leg
        ankle.confidence *= 0.8
    for knee in (pose.left_knee, pose.right_knee):
        knee.y = hip_center_y + target_leg * 0.5
        knee.confidence *= 0.8


def _correct_symmetry(pose: Pose, corrections: List[str]) -> None:
    for left_id, right_id in SYMMETRY_PAIRS:
        left, right = pose[left_id], pose[right_id]
        y_diff = abs(left.y - right.y)
        if y_diff <= SYMMETRY_TOLERANCE:
            continue
        corrections.append(
            f"Corrected {left_id.wire_name}/{right_id.wire_name} vertical alignment (diff: {y_diff:.1f}px)"
        )
        avg_y = (left.y + right.y) / 2.0
        left.y = avg_y
        right.y = avg_y
        left.confidence *= 0.9
        right.confidence *= 0.9


def _dampen_sudden_movement(pose: Pose, previous: Pose, corrections: List[str]) -> None:
    for landmark_id, current in pose.items():
        recent = previous[landmark_id]
        distance = current.distance_to(recent)
        if distance <= MAX_FRAME_DISPLACEMENT:
            continue
        corrections.append(f"Dampened sudden movement for {landmark_id.wire_name} ({distance:.1f}px)")
        scale = MAX_FRAME_DISPLACEMENT / distance
        current.x = recent.x + (current.x - recent.x) * scale
        current.y = recent.y + (current.y - recent.y) * scale
        current.confidence *= 0.8


_InterpolationRule = Tuple[LandmarkId, Tuple[LandmarkId, ...], Callable[[Sequence[Landmark]], Tuple[float, float]]]

_INTERPOLATION_RULES: Tuple[_InterpolationRule, ...] = (
    (
        LandmarkId.NOSE,
        (LandmarkId.LEFT_EYE, LandmarkId.RIGHT_EYE),
        lambda src: ((src[0].x + src[1].x) / 2.0, (src[0].y + src[1].y) / 2.0 - 20.0),
    ),
    (
        LandmarkId.LEFT_SHOULDER,
        (LandmarkId.LEFT_HIP, LandmarkId.NOSE),
        lambda src: (src[0].x - 10.0, src[1].y + 80.0),
    ),
    (
        LandmarkId.RIGHT_SHOULDER,
        (LandmarkId.RIGHT_HIP, LandmarkId.NOSE),
        lambda src: (src[0].x + 10.0, src[1].y + 80.0),
    ),
)


class PoseCorrectionEngine:
    """Applies a fixed sequence of corrections and rescales the pose confidence.

    The frame size is only used for the clean-pose check that decides whether
    the corrected pose earns the confidence boost.
    """

    def __init__(self, config: Optional[TrackingConfig] = None) -> None:
        self.config = config or TrackingConfig()
        self.constraints = ANATOMICAL_CONSTRAINTS

    def validate_and_correct_pose(
        self,
        pose: Pose,
        history: Sequence[Pose] | PoseHistory | None = None,
        *,
        frame_width: Optional[float] = None,
        frame_height: Optional[float] = None,
    ) -> CorrectionResult:
        """Apply the anatomical corrections to a copy of ``pose`` and rescore it.

        The clean-pose boost is decided by validating against the given frame
        size, or the configured default frame when none is passed.
        """
        corrected = pose.copy()
        corrections: List[str] = []

        _correct_shoulder_hip(corrected, corrections)
        _correct_torso_leg(corrected, corrections)
        _correct_symmetry(corrected, corrections)
        poses = list(history or [])
        if poses:
            _dampen_sudden_movement(corrected, poses[-1], corrections)

        width = self.config.default_frame_width if frame_width is None else frame_width
        height = self.config.default_frame_height if frame_height is None else frame_height
        corrected.confidence = self._recalculate_confidence(corrected, corrections, poses, width, height)
        if corrections:
            logger.debug("Applied %s pose corrections: %s", len(corrections), "; ".join(corrections))
        return CorrectionResult(corrected_pose=corrected, corrections=corrections)

    def _recalculate_confidence(
        self,
        pose: Pose,
        corrections: List[str],
        history: List[Pose],
        frame_width: float,
        frame_height: float,
    ) -> float:
        confidence = pose.confidence * max(MIN_CORRECTION_FACTOR, 1.0 - CORRECTION_PENALTY * len(corrections))
        validation = validate_pose_quality(
            pose,
            frame_width,
            frame_height,
            history,
        )
        if validation.is_valid:
            confidence = min(1.0, confidence * CLEAN_POSE_BOOST)
        return max(0.0, min(1.0, confidence))

    def interpolate_missing_landmarks(self, pose: Pose) -> Pose:
        """Rebuild the nose and shoulders from confident neighbours when they are weak."""
        interpolated = pose.copy()
        for target_id, source_ids, calculate in _INTERPOLATION_RULES:
            target = interpolated[target_id]
            if target.confidence >= INTERPOLATION_TARGET_THRESHOLD:
                continue
            sources = [interpolated[source_id] for source_id in source_ids]
            if any(source.confidence <= INTERPOLATION_SOURCE_THRESHOLD for source in sources):
                continue
            target.x, target.y = calculate(sources)
            target.confidence = min(source.confidence for source in sources) * INTERPOLATION_CONFIDENCE_SCALE
        return interpolated


__all__ = [
    "ANATOMICAL_CONSTRAINTS",
    "RatioConstraint",
    "CorrectionResult",
    "PoseCorrectionEngine",
]
