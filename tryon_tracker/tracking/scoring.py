"""Composite pose confidence scoring.

The overall score blends four signals:

    0.4 * mean landmark confidence (landmarks above 0.3 only)
  + 0.3 * anatomical consistency (body proportions)
  + 0.2 * temporal stability (recent movement in the pose history)
  + 0.1 * spatial coherence (left/right alignment and vertical ordering)

A pose with fewer than eight usable landmarks scores 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from tryon_tracker.tracking.landmarks import (
    MIN_VALID_LANDMARKS,
    Pose,
    PoseHistory,
    clamp01,
    midpoint_y,
    recent_mean_displacement,
)

CONFIDENCE_WEIGHT = 0.4
ANATOMY_WEIGHT = 0.3
STABILITY_WEIGHT = 0.2
COHERENCE_WEIGHT = 0.1

DEFAULT_ANATOMY_SCORE = 0.3
NEUTRAL_STABILITY_SCORE = 0.5
STABILITY_MOVEMENT_SCALE = 50.0


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores behind a composite confidence (all in [0, 1])."""

    average_confidence: float
    anatomical_consistency: float
    temporal_stability: float
    spatial_coherence: float
    overall: float


def _ratio_credit(value: float, full: tuple[float, float], partial: tuple[float, float]) -> float:
    if full[0] <= value <= full[1]:
        return 0.4
    if partial[0] <= value <= partial[1]:
        return 0.2
    return 0.0


def anatomical_consistency(pose: Pose) -> float:
    shoulder_width = abs(pose.right_shoulder.x - pose.left_shoulder.x)
    hip_width = abs(pose.right_hip.x - pose.left_hip.x)
    ratio = shoulder_width / max(hip_width, 1.0)

    hip_center_y = midpoint_y(pose.left_hip, pose.right_hip)
    torso_height = abs(pose.nose.y - hip_center_y)

    left_leg = abs(pose.left_hip.y - pose.left_knee.y)
    right_leg = abs(pose.right_hip.y - pose.right_knee.y)
    longest = max(left_leg, right_leg)
    if longest <= 1e-9:
        # Both upper legs collapsed to zero length: proportions are undefined.
        return DEFAULT_ANATOMY_SCORE
    leg_symmetry = 1.0 - abs(left_leg - right_leg) / longest

    score = _ratio_credit(ratio, (0.7, 1.6), (0.5, 2.0))
    score += _ratio_credit(torso_height, (80.0, 600.0), (50.0, 800.0))
    score += leg_symmetry * 0.2
    return clamp01(score)


def temporal_stability(history: Sequence[Pose] | PoseHistory | None) -> float:
    poses = list(history or [])
    if len(poses) < 2:
        return NEUTRAL_STABILITY_SCORE
    avg_movement = recent_mean_displacement(poses[-3:])
    return max(0.0, 1.0 - avg_movement / STABILITY_MOVEMENT_SCALE)


def _alignment(delta_y: float) -> float:
    if delta_y < 20.0:
        return 1.0
    return max(0.0, 1.0 - delta_y / 50.0)


def spatial_coherence(pose: Pose) -> float:
    shoulder_alignment = _alignment(abs(pose.left_shoulder.y - pose.right_shoulder.y))
    hip_alignment = _alignment(abs(pose.left_hip.y - pose.right_hip.y))

    shoulder_y = midpoint_y(pose.left_shoulder, pose.right_shoulder)
    hip_y = midpoint_y(pose.left_hip, pose.right_hip)
    knee_y = midpoint_y(pose.left_knee, pose.right_knee)
    vertical_order = 1.0 if shoulder_y < hip_y else 0.3
    knee_position = 1.0 if knee_y > hip_y else 0.5

    return clamp01(
        shoulder_alignment * 0.3
        + hip_alignment * 0.3
        + vertical_order * 0.2
        + knee_position * 0.2
    )


def score_breakdown(pose: Optional[Pose], history: Sequence[Pose] | PoseHistory | None = None) -> ScoreBreakdown:
    """Compute every sub-score; ``overall`` is 0 when too few landmarks are usable."""
    if pose is None:
        return ScoreBreakdown(0.0, 0.0, 0.0, 0.0, 0.0)
    valid = pose.valid_landmarks()
    avg_conf = float(np.mean([lm.confidence for lm in valid])) if valid else 0.0
    anatomy = anatomical_consistency(pose)
    stability = temporal_stability(history)
    coherence = spatial_coherence(pose)
    if len(valid) < MIN_VALID_LANDMARKS:
        overall = 0.0
    else:
        overall = clamp01(
            avg_conf * CONFIDENCE_WEIGHT
            + anatomy * ANATOMY_WEIGHT
            + stability * STABILITY_WEIGHT
            + coherence * COHERENCE_WEIGHT
        )
    return ScoreBreakdown(avg_conf, anatomy, stability, coherence, overall)


def calculate_pose_confidence(pose: Optional[Pose], history: Sequence[Pose] | PoseHistory | None = None) -> float:
    """Composite confidence in [0, 1] for a pose given the session history."""
    return score_breakdown(pose, history).overall


__all__ = [
    "ScoreBreakdown",
    "anatomical_consistency",
    "temporal_stability",
    "spatial_coherence",
    "score_breakdown",
    "calculate_pose_confidence",
]
