"""Landmark detector adapters.

A detector is any callable ``detect(frame, width, height)`` returning a raw
pose payload (anything `pose_from_raw` accepts) or None when nobody is visible.

`SyntheticPoseDetector` produces a proportional, frame-centred body and is
what the CLI demo and the benchmark drive. `MediaPipePoseDetector` wraps the
MediaPipe Pose solution; ``mediapipe`` and ``opencv-python`` are optional and
only imported when that detector is constructed.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from tryon_tracker.env import get_env
from tryon_tracker.tracking.config import TRACKING_LOGGER
from tryon_tracker.tracking.landmarks import Landmark, LandmarkId, Pose, clamp01, monotonic_ms

logger = TRACKING_LOGGER

LandmarkTuple = Tuple[float, float, float, float]
Detector = Callable[[Any, float, float], Any]

# MediaPipe Pose (33 points) index for each of our landmarks.
MEDIAPIPE_INDEX: Dict[LandmarkId, int] = {
    LandmarkId.NOSE: 0,
    LandmarkId.LEFT_EYE: 2,
    LandmarkId.RIGHT_EYE: 5,
    LandmarkId.LEFT_EAR: 7,
    LandmarkId.RIGHT_EAR: 8,
    LandmarkId.LEFT_SHOULDER: 11,
    LandmarkId.RIGHT_SHOULDER: 12,
    LandmarkId.LEFT_ELBOW: 13,
    LandmarkId.RIGHT_ELBOW: 14,
    LandmarkId.LEFT_WRIST: 15,
    LandmarkId.RIGHT_WRIST: 16,
    LandmarkId.LEFT_HIP: 23,
    LandmarkId.RIGHT_HIP: 24,
    LandmarkId.LEFT_KNEE: 25,
    LandmarkId.RIGHT_KNEE: 26,
    LandmarkId.LEFT_ANKLE: 27,
    LandmarkId.RIGHT_ANKLE: 28,
}
MEDIAPIPE_LANDMARK_COUNT = 33

# (x as a fraction of shoulder width, x offset in px, y as a fraction of body
# height, confidence), relative to the frame centre.
_SYNTHETIC_LAYOUT: Dict[LandmarkId, Tuple[float, float, float, float]] = {
    LandmarkId.NOSE: (0.0, 0.0, -0.25, 0.8),
    LandmarkId.LEFT_EYE: (0.0, -15.0, -0.3, 0.8),
    LandmarkId.RIGHT_EYE: (0.0, 15.0, -0.3, 0.8),
    LandmarkId.LEFT_EAR: (0.0, -30.0, -0.25, 0.7),
    LandmarkId.RIGHT_EAR: (0.0, 30.0, -0.25, 0.7),
    LandmarkId.LEFT_SHOULDER: (-1 / 2, 0.0, -0.1, 0.8),
    LandmarkId.RIGHT_SHOULDER: (1 / 2, 0.0, -0.1, 0.8),
    LandmarkId.LEFT_ELBOW: (-1 / 2, -40.0, 0.1, 0.7),
    LandmarkId.RIGHT_ELBOW: (1 / 2, 40.0, 0.1, 0.7),
    LandmarkId.LEFT_WRIST: (-1 / 2, -30.0, 0.25, 0.6),
    LandmarkId.RIGHT_WRIST: (1 / 2, 30.0, 0.25, 0.6),
    LandmarkId.LEFT_HIP: (-1 / 3, 0.0, 0.2, 0.8),
    LandmarkId.RIGHT_HIP: (1 / 3, 0.0, 0.2, 0.8),
    LandmarkId.LEFT_KNEE: (-1 / 4, 0.0, 0.4, 0.7),
    LandmarkId.RIGHT_KNEE: (1 / 4, 0.0, 0.4, 0.7),
    LandmarkId.LEFT_ANKLE: (-1 / 5, 0.0, 0.55, 0.6),
    LandmarkId.RIGHT_ANKLE: (1 / 5, 0.0, 0.55, 0.6),
}
SYNTHETIC_POSE_CONFIDENCE = 0.75


class SyntheticPoseDetector:
    """Deterministic mock detector: a standing figure centred in the frame.

    ``noise`` adds Gaussian jitter (in pixels) drawn from ``rng`` so callers can
    exercise the smoother; ``offset`` shifts the whole body.
    """

    def __init__(
        self,
        *,
        noise: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.noise = float(noise)
        self.rng = rng or np.random.default_rng()
        self.offset: Tuple[float, float] = (0.0, 0.0)
        self._clock = clock

    def layout(self, frame_width: float, frame_height: float) -> Pose:
        center_x = frame_width / 2.0 + self.offset[0]
        center_y = frame_height / 2.0 + self.offset[1]
        shoulder_width = frame_width * 0.25
        body_height = frame_height * 0.6
        landmarks: List[Landmark] = []
        for landmark_id in LandmarkId:
            shoulder_frac, dx, height_frac, confidence = _SYNTHETIC_LAYOUT[landmark_id]
            landmarks.append(
                Landmark(
                    center_x + shoulder_frac * shoulder_width + dx,
                    center_y + height_frac * body_height,
                    None,
                    confidence,
                )
            )
        return Pose(landmarks, confidence=SYNTHETIC_POSE_CONFIDENCE, timestamp=self._clock())

    def __call__(self, frame: Any, frame_width: float, frame_height: float) -> Pose:
        pose = self.layout(frame_width, frame_height)
        if self.noise > 0:
            jitter = self.rng.normal(0.0, self.noise, size=(len(pose.landmarks), 2))
            for landmark, (jx, jy) in zip(pose.landmarks, jitter):
                landmark.x += float(jx)
                landmark.y += float(jy)
        return pose


def landmarks_from_mediapipe(
    landmarks: Sequence[LandmarkTuple],
    frame_width: float,
    frame_height: float,
    *,
    timestamp: float | None = None,
) -> Optional[Pose]:
    """Map 33 normalised MediaPipe landmarks ``(x, y, z, visibility)`` to a pixel-space `Pose`.

    Returns None when fewer than 33 landmarks are supplied.
    """
    if len(landmarks) < MEDIAPIPE_LANDMARK_COUNT:
        return None
    mapped: List[Landmark] = []
    for landmark_id in LandmarkId:
        x, y, z, visibility = landmarks[MEDIAPIPE_INDEX[landmark_id]]
        mapped.append(Landmark(float(x) * frame_width, float(y) * frame_height, float(z), clamp01(visibility)))
    overall = float(np.mean([lm.confidence for lm in mapped]))
    return Pose(mapped, confidence=overall, timestamp=monotonic_ms() if timestamp is None else timestamp)


class MediaPipePoseDetector:
    """Wrapper around the MediaPipe Pose solution for BGR video frames."""

    def __init__(self, *, model_complexity: int | None = None, clock: Callable[[], float] = monotonic_ms) -> None:
        try:
            import cv2
            import mediapipe as mp
        except ImportError as exc:
            raise ImportError(
                "MediaPipePoseDetector requires the optional 'mediapipe' extra "
                "(pip install 'tryon-tracker[mediapipe]')."
            ) from exc

        if model_complexity is None:
            env_complexity = get_env("POSE_MODEL_COMPLEXITY")
            model_complexity = int(float(env_complexity)) if env_complexity else 1
        model_complexity = int(np.clip(model_complexity, 0, 2))

        self._cv2 = cv2
        self._pose = mp.solutions.pose.Pose(
            static_image_mode=False,
            smooth_landmarks=True,
            model_complexity=model_complexity,
        )
        self._clock = clock
        logger.info("MediaPipePoseDetector initialized (model_complexity=%s).", model_complexity)

    @staticmethod
    def _landmark_to_tuple(landmark: object) -> LandmarkTuple:
        confidence = getattr(landmark, "visibility", getattr(landmark, "presence", 1.0))
        return (float(landmark.x), float(landmark.y), float(landmark.z), float(confidence))

    def __call__(self, frame: np.ndarray, frame_width: float, frame_height: float) -> Optional[Pose]:
        rgb_frame = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)
        results = self._pose.process(rgb_frame)
        if results.pose_landmarks is None:
            return None
        raw = [self._landmark_to_tuple(lm) for lm in results.pose_landmarks.landmark]
        return landmarks_from_mediapipe(raw, frame_width, frame_height, timestamp=self._clock())

    def close(self) -> None:
        self._pose.close()

    def __enter__(self) -> "MediaPipePoseDetector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = [
    "Detector",
    "MEDIAPIPE_INDEX",
    "SyntheticPoseDetector",
    "MediaPipePoseDetector",
    "landmarks_from_mediapipe",
]
