"""Single-pose quality validation utilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger
from tryon_tracker.tracking.landmarks import (
    MIN_VALID_LANDMARKS,
    Pose,
    PoseHistory,
    clamp01,
    mean_displacement,
    midpoint_y,
)

DEFAULT_FRAME_WIDTH = 400
DEFAULT_FRAME_HEIGHT = 600
PARTIAL_COVERAGE_LANDMARKS = 12


@dataclass
class PoseValidation:
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    quality_score: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {"is_valid": self.is_valid, "issues": list(self.issues), "quality_score": self.quality_score}


def _coverage_check(pose: Pose) -> Tuple[List[str], float]:
    valid_count = len(pose.valid_landmarks())
    if valid_count < MIN_VALID_LANDMARKS:
        return ["Insufficient landmarks detected"], 0.3
    if valid_count < PARTIAL_COVERAGE_LANDMARKS:
        return ["Partial landmark detection"], 0.7
    return [], 1.0


def _anatomical_check(pose: Pose) -> Tuple[List[str], float]:
    issues: List[str] = []
    score = 1.0

    shoulder_width = abs(pose.right_shoulder.x - pose.left_shoulder.x)
    hip_width = abs(pose.right_hip.x - pose.left_hip.x)
    if shoulder_width < 30 or hip_width < 25:
        issues.append("Body too small in frame")
        score *= 0.4
    if shoulder_width > hip_width * 2.5:
        issues.append("Unrealistic shoulder-to-hip ratio")
        score *= 0.5

    if midpoint_y(pose.left_shoulder, pose.right_shoulder) >= midpoint_y(pose.left_hip, pose.right_hip):
        issues.append("Inverted body orientation")
        score *= 0.3

    left_leg = abs(pose.left_hip.y - pose.left_knee.y) + abs(pose.left_knee.y - pose.left_ankle.y)
    right_leg = abs(pose.right_hip.y - pose.right_knee.y) + abs(pose.right_knee.y - pose.right_ankle.y)
    if left_leg < 50 or right_leg < 50:
        issues.append("Legs too short")
        score *= 0.6

    longest = max(left_leg, right_leg)
    leg_ratio = min(left_leg, right_leg) / longest if longest > 0 else 1.0
    if leg_ratio < 0.7:
        issues.append("Asymmetric leg lengths")
        score *= 0.8
    return issues, score


def _framing_check(pose: Pose, frame_width: float, frame_height: float) -> Tuple[List[str], float]:
    issues: List[str] = []
    score = 1.0
    coords = pose.xy()
    min_x, min_y = coords.min(axis=0)
    max_x, max_y = coords.max(axis=0)
    width = max(float(frame_width), 1.0)
    height = max(float(frame_height), 1.0)

    if (max_x - min_x) / width > 0.9:
        issues.append("Body too wide for frame")
        score *= 0.7
    if (max_y - min_y) / height > 0.9:
        issues.append("Body too tall for frame")
        score *= 0.7

    center_offset = abs((min_x + max_x) / 2.0 - width / 2.0) / width
    if center_offset > 0.3:
        issues.append("Body not centered in frame")
        score *= 0.8
    return issues, score


def _confidence_distribution_check(pose: Pose) -> Tuple[List[str], float]:
    issues: List[str] = []
    score = 1.0
    confidences = pose.confidences()
    if float(confidences.min()) < 0.2:
        issues.append("Some landmarks have very low confidence")
        score *= 0.8
    if float(np.std(confidences)) > 0.3:
        issues.append("Inconsistent landmark confidence")
        score *= 0.9
    return issues, score


def _temporal_check(pose: Pose, previous: Pose) -> Tuple[List[str], float]:
    avg_movement = mean_displacement(pose, previous)
    if avg_movement > 100:
        return ["Sudden large movement detected"], 0.6
    if avg_movement > 50:
        return ["Rapid movement detected"], 0.8
    return [], 1.0


def validate_pose_quality(
    pose: Optional[Pose],
    frame_width: float = DEFAULT_FRAME_WIDTH,
    frame_height: float = DEFAULT_FRAME_HEIGHT,
    history: Sequence[Pose] | PoseHistory | None = None,
) -> PoseValidation:
    """Run coverage, anatomy, framing, confidence and temporal checks.

    Each failed check appends an issue and multiplies the quality score; the
    pose is valid only when no issue was raised. The temporal check runs when
    the history holds at least three poses and compares against the latest.
    """
    if pose is None:
        return PoseValidation(is_valid=False, issues=["No pose data"], quality_score=0.0)

    checks = [
        _coverage_check(pose),
        _anatomical_check(pose),
        _framing_check(pose, frame_width, frame_height),
        _confidence_distribution_check(pose),
    ]
    poses = list(history or [])
    if len(poses) >= 3:
        checks.append(_temporal_check(pose, poses[-1]))

    issues: List[str] = []
    quality = 1.0
    for check_issues, check_score in checks:
        issues.extend(check_issues)
        quality *= check_score

    if issues:
        logger.debug("Pose quality issues: %s", "; ".join(issues))
    return PoseValidation(is_valid=not issues, issues=issues, quality_score=clamp01(quality))


__all__ = ["PoseValidation", "validate_pose_quality", "DEFAULT_FRAME_WIDTH", "DEFAULT_FRAME_HEIGHT"]
