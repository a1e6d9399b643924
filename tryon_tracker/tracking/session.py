"""Per-session frame pipeline.

One `TrackingSession` owns every piece of mutable tracking state (history,
recovery state, segmentation cache, performance counters). Calls to
`TrackingSession.process_frame` must not overlap; sessions never share state,
so independent sessions can run side by side.

Per frame: detect, recover when the detection is missing or weak, correct,
interpolate, smooth, score. The session clock stamps every pose so that the
history window and the recovery cooldown agree on time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger, TrackingConfig
from tryon_tracker.tracking.correction import PoseCorrectionEngine
from tryon_tracker.tracking.detectors import Detector
from tryon_tracker.tracking.errors import PoseDataError
from tryon_tracker.tracking.landmarks import Pose, PoseHistory, monotonic_ms, pose_from_raw
from tryon_tracker.tracking.performance import PerformanceMetrics, PoseDetectionPerformanceMonitor
from tryon_tracker.tracking.recovery import PoseRecoveryManager, TrackingState
from tryon_tracker.tracking.scoring import calculate_pose_confidence
from tryon_tracker.tracking.segmentation import (
    BodySegmentationEngine,
    Bounds,
    OverlayConflictReport,
    OverlayConstraints,
    SegmentationMask,
)
from tryon_tracker.tracking.smoothing import smooth_pose


@dataclass
class FrameResult:
    """What the renderer gets for one frame; ``pose`` is None when nothing is drawable."""

    pose: Optional[Pose]
    confidence: float
    corrections: List[str] = field(default_factory=list)
    recovered: bool = False
    tracking_lost: bool = False
    processing_time_ms: float = 0.0
    recovery_strategy: Optional[str] = None
    recovery_exhausted: bool = False


class TrackingSession:
    def __init__(
        self,
        detector: Detector,
        config: Optional[TrackingConfig] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.detector = detector
        self.config = config or TrackingConfig()
        self._clock = clock
        self.history = PoseHistory()
        self.recovery = PoseRecoveryManager(self.config, clock=clock)
        self.corrector = PoseCorrectionEngine(self.config)
        self.segmentation = BodySegmentationEngine()
        self.performance = PoseDetectionPerformanceMonitor(clock=clock)
        self.last_pose: Optional[Pose] = None
        self.frames_processed = 0
        logger.info(
            "Tracking session started (min_confidence=%s, smoothing=%s).",
            self.config.min_confidence,
            "on" if self.config.enable_tracking else "off",
        )

    @property
    def state(self) -> TrackingState:
        return self.recovery.state

    def _detect(self, frame: Any, width: float, height: float, now: float) -> Optional[Pose]:
        try:
            raw = self.detector(frame, width, height)
            if raw is None:
                return None
            pose = pose_from_raw(raw)
        except PoseDataError as exc:
            logger.warning("Discarding unusable detector payload: %s", exc)
            return None
        except Exception as exc:
            logger.warning("Pose detector failed: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            return None
        pose.timestamp = now
        return pose

    def process_frame(
        self,
        frame: Any = None,
        frame_width: Optional[float] = None,
        frame_height: Optional[float] = None,
    ) -> FrameResult:
        started = time.perf_counter()
        width = float(frame_width if frame_width is not None else self.config.default_frame_width)
        height = float(frame_height if frame_height is not None else self.config.default_frame_height)
        now = self._clock()
        self.frames_processed += 1

        pose = self._detect(frame, width, height, now)
        recovered = False
        strategy: Optional[str] = None
        if (pose is None or pose.confidence < self.config.min_confidence) and self.recovery.should_attempt_recovery():
            candidate = self.recovery.recover_pose(frame, width, height, self.history)
            strategy = self.recovery.last_strategy
            if candidate is not None:
                pose = candidate
                recovered = True
                logger.debug("Recovered pose via %s (confidence %.3f)", strategy, candidate.confidence)

        result = FrameResult(pose=None, confidence=0.0, recovered=recovered, recovery_strategy=strategy)
        if pose is not None and pose.confidence > self.config.min_confidence:
            correction = self.corrector.validate_and_correct_pose(
                pose, self.history, frame_width=width, frame_height=height
            )
            result.corrections = correction.corrections
            candidate = self.corrector.interpolate_missing_landmarks(correction.corrected_pose)
            if self.config.enable_tracking:
                candidate = smooth_pose(candidate, self.history, self.config, now_ms=now)
            score = calculate_pose_confidence(candidate, self.history)
            if score > self.config.min_confidence:
                final = candidate.copy(confidence=score)
                self.recovery.update_valid_pose(final)
                self.last_pose = final
                result.pose = final
                result.confidence = score

        if result.pose is None:
            result.tracking_lost = True
            self.recovery.mark_lost()
            logger.debug("Frame %s: no usable pose", self.frames_processed)

        result.recovery_exhausted = not self.recovery.should_attempt_recovery()
        result.processing_time_ms = (time.perf_counter() - started) * 1000.0
        self.performance.record_frame(result.processing_time_ms)
        return result

    def segment(
        self,
        frame_width: Optional[int] = None,
        frame_height: Optional[int] = None,
        pose: Optional[Pose] = None,
    ) -> Optional[SegmentationMask]:
        """Segment ``pose`` (default: the last accepted pose); None before the first one."""
        target = pose if pose is not None else self.last_pose
        if target is None:
            return None
        return self.segmentation.segment_body(
            target,
            int(frame_width or self.config.default_frame_width),
            int(frame_height or self.config.default_frame_height),
        )

    def overlay_constraints(self, category: str, mask: Optional[SegmentationMask] = None) -> OverlayConstraints:
        mask = mask if mask is not None else self.segment()
        if mask is None:
            return OverlayConstraints()
        return self.segmentation.get_overlay_constraints(mask, category)

    def check_overlay_conflicts(
        self,
        overlay_bounds: Bounds,
        category: str,
        mask: Optional[SegmentationMask] = None,
    ) -> OverlayConflictReport:
        mask = mask if mask is not None else self.segment()
        if mask is None:
            return OverlayConflictReport()
        return self.segmentation.check_overlay_conflicts(overlay_bounds, mask, category)

    def metrics(self) -> PerformanceMetrics:
        return self.performance.get_metrics()

    def reset(self) -> None:
        self.history.clear()
        self.recovery.reset()
        self.segmentation.clear_cache()
        self.performance.reset()
        self.last_pose = None
        self.frames_processed = 0
        logger.info("Tracking session reset.")


__all__ = ["FrameResult", "TrackingSession"]
