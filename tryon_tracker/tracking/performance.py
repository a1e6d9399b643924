"""Rolling frame-time and FPS statistics for a tracking session."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Deque, Dict

import numpy as np

from tryon_tracker.tracking.landmarks import monotonic_ms

PROCESSING_SAMPLES = 60
FPS_SAMPLES = 10
FPS_WINDOW_MS = 1000.0


@dataclass(frozen=True)
class PerformanceMetrics:
    average_processing_time: float
    average_fps: float
    current_fps: float
    total_frames: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class PoseDetectionPerformanceMonitor:
    """Keeps the last 60 processing times and one FPS sample per elapsed second.

    ``total_frames`` counts frames in the current (incomplete) FPS window.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self.processing_times: Deque[float] = deque(maxlen=PROCESSING_SAMPLES)
        self.fps_history: Deque[float] = deque(maxlen=FPS_SAMPLES)
        self.frame_count = 0
        self.window_start = clock()

    def record_frame(self, processing_ms: float) -> None:
        self.frame_count += 1
        self.processing_times.append(float(processing_ms))

        now = self._clock()
        elapsed = now - self.window_start
        if elapsed >= FPS_WINDOW_MS:
            self.fps_history.append(self.frame_count / (elapsed / 1000.0))
            self.frame_count = 0
            self.window_start = now

    def get_metrics(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            average_processing_time=float(np.mean(self.processing_times)) if self.processing_times else 0.0,
            average_fps=float(np.mean(self.fps_history)) if self.fps_history else 0.0,
            current_fps=self.fps_history[-1] if self.fps_history else 0.0,
            total_frames=self.frame_count,
        )

    def reset(self) -> None:
        self.processing_times.clear()
        self.fps_history.clear()
        self.frame_count = 0
        self.window_start = self._clock()


__all__ = ["PerformanceMetrics", "PoseDetectionPerformanceMonitor"]
