"""Temporal smoothing for live pose landmarks.

Each new pose is blended toward the recent history with weights that decay
with both position in the history and age, and that shrink for landmarks that
are moving fast so genuine movement does not lag. Sub-threshold movement is
treated as jitter and snapped back to the previous position.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger, TrackingConfig
from tryon_tracker.tracking.landmarks import (
    LANDMARK_COUNT,
    Pose,
    PoseHistory,
    estimate_velocities,
    monotonic_ms,
)

VELOCITY_WINDOW = 3
SPEED_DAMPING_SCALE = 500.0
MIN_DAMPING = 0.3
MIN_RECENCY_WEIGHT = 0.1


def damping_factors(history: PoseHistory) -> np.ndarray:
    """Per-landmark damping in [0.3, 1]; 1 where no velocity can be estimated."""
    velocities = estimate_velocities(history.recent(VELOCITY_WINDOW))
    if velocities is None:
        return np.ones(LANDMARK_COUNT, dtype=float)
    speeds = np.linalg.norm(velocities, axis=1)
    return np.clip(1.0 - speeds / SPEED_DAMPING_SCALE, MIN_DAMPING, 1.0)


def smooth_pose(
    current: Pose,
    history: PoseHistory,
    config: Optional[TrackingConfig] = None,
    *,
    now_ms: float | None = None,
) -> Pose:
    """Return a stabilised copy of ``current`` and append it to ``history``.

    Confidence is the maximum of the current and historical values rather than
    a blend, so a landmark that was once confidently detected keeps that
    confidence while it stays inside the window.
    """
    cfg = config or TrackingConfig()
    now = monotonic_ms() if now_ms is None else float(now_ms)
    smoothed = current.copy()

    if history:
        dropped = history.prune(now, cfg.temporal_window_ms)
        if dropped:
            logger.debug("Pruned %s stale poses from history", dropped)
    if not history:
        history.append(smoothed)
        return smoothed

    damping = damping_factors(history)
    count = len(history)
    for index, past in enumerate(history):
        weight = cfg.smoothing_factor ** (count - index)
        age_ms = now - past.timestamp
        recency = min(1.0, max(MIN_RECENCY_WEIGHT, 1.0 - age_ms / 1000.0))
        for landmark_id, landmark in smoothed.items():
            hist = past[landmark_id]
            combined = float(np.clip(weight * recency * damping[landmark_id], 0.0, 1.0))
            landmark.x = landmark.x * (1.0 - combined) + hist.x * combined
            landmark.y = landmark.y * (1.0 - combined) + hist.y * combined
            if landmark.z is not None and hist.z is not None:
                landmark.z = landmark.z * (1.0 - combined) + hist.z * combined
            landmark.confidence = max(landmark.confidence, hist.confidence)

    previous = history[-1]
    for landmark_id, landmark in smoothed.items():
        prev = previous[landmark_id]
        if landmark.distance_to(prev) < cfg.max_jitter_threshold:
            landmark.x = prev.x
            landmark.y = prev.y
            if landmark.z is not None:
                landmark.z = prev.z

    history.append(smoothed)
    return smoothed


class TemporalSmoother:
    """Binds a config, a pose history and a clock for per-frame smoothing."""

    def __init__(
        self,
        config: Optional[TrackingConfig] = None,
        *,
        history: Optional[PoseHistory] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.config = config or TrackingConfig()
        self.history = history if history is not None else PoseHistory()
        self._clock = clock

    def smooth(self, pose: Pose) -> Pose:
        return smooth_pose(pose, self.history, self.config, now_ms=self._clock())

    def reset(self) -> None:
        self.history.clear()


__all__ = ["smooth_pose", "damping_factors", "TemporalSmoother"]
