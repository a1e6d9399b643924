"""Pose tracking core for garment try-on overlays.

Exports are resolved lazily so that importing the data model does not pull in
pandas/rich (benchmark) or matplotlib (segmentation plots).
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    # landmarks
    "Landmark": "landmarks",
    "LandmarkId": "landmarks",
    "Pose": "landmarks",
    "PoseHistory": "landmarks",
    "pose_from_raw": "landmarks",
    # config / errors
    "TRACKING_LOGGER": "config",
    "TrackingConfig": "config",
    "load_tracking_config": "config",
    "validate_config_values": "config",
    "config_as_dict": "config",
    "TrackingError": "errors",
    "PoseDataError": "errors",
    "ConfigError": "errors",
    # pipeline stages
    "TemporalSmoother": "smoothing",
    "smooth_pose": "smoothing",
    "calculate_pose_confidence": "scoring",
    "score_breakdown": "scoring",
    "PoseValidation": "validation",
    "validate_pose_quality": "validation",
    "ANATOMICAL_CONSTRAINTS": "correction",
    "CorrectionResult": "correction",
    "PoseCorrectionEngine": "correction",
    "PoseRecoveryManager": "recovery",
    "TrackingState": "recovery",
    "fallback_pose": "recovery",
    "Bounds": "segmentation",
    "BodySegment": "segmentation",
    "SegmentationMask": "segmentation",
    "OverlayConstraints": "segmentation",
    "OverlayConflictReport": "segmentation",
    "BodySegmentationEngine": "segmentation",
    "plot_segmentation_mask": "segmentation",
    # session and tooling
    "SyntheticPoseDetector": "detectors",
    "MediaPipePoseDetector": "detectors",
    "landmarks_from_mediapipe": "detectors",
    "FrameResult": "session",
    "TrackingSession": "session",
    "PoseDetectionPerformanceMonitor": "performance",
    "PoseDetectionBenchmark": "benchmark",
    "BenchmarkReport": "benchmark",
    "report_to_dataframe": "benchmark",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(f".{module_name}", __name__)
    return getattr(module, name)
