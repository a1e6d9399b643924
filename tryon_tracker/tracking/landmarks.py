"""Pose and landmark data model shared by every tracking component.

A `Pose` always carries all 17 landmarks in `LandmarkId` order. A landmark the
detector could not see is kept with a low confidence (<= 0.3) rather than
dropped, so the correction and interpolation passes can rely on every
anatomical neighbour being present.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger
from tryon_tracker.tracking.errors import PoseDataError

VALID_LANDMARK_CONFIDENCE = 0.3
MIN_VALID_LANDMARKS = 8


class LandmarkId(IntEnum):
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16

    @property
    def wire_name(self) -> str:
        """camelCase name used by detector payloads (``leftShoulder``)."""
        head, *rest = self.name.lower().split("_")
        return head + "".join(part.capitalize() for part in rest)


LANDMARK_COUNT = len(LandmarkId)

# Left/right pairs in the order the symmetry pass visits them.
SYMMETRY_PAIRS: Tuple[Tuple[LandmarkId, LandmarkId], ...] = (
    (LandmarkId.LEFT_SHOULDER, LandmarkId.RIGHT_SHOULDER),
    (LandmarkId.LEFT_HIP, LandmarkId.RIGHT_HIP),
    (LandmarkId.LEFT_KNEE, LandmarkId.RIGHT_KNEE),
    (LandmarkId.LEFT_ANKLE, LandmarkId.RIGHT_ANKLE),
    (LandmarkId.LEFT_ELBOW, LandmarkId.RIGHT_ELBOW),
    (LandmarkId.LEFT_WRIST, LandmarkId.RIGHT_WRIST),
    (LandmarkId.LEFT_EAR, LandmarkId.RIGHT_EAR),
    (LandmarkId.LEFT_EYE, LandmarkId.RIGHT_EYE),
)

_NAME_LOOKUP: Dict[str, LandmarkId] = {}
for _lid in LandmarkId:
    _NAME_LOOKUP[_lid.name.lower()] = _lid
    _NAME_LOOKUP[_lid.wire_name.lower()] = _lid


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def clamp01(value: float) -> float:
    """Clamp to [0, 1], mapping NaN to 0."""
    value = float(value)
    if not math.isfinite(value):
        return 0.0 if math.isnan(value) or value < 0 else 1.0
    return min(1.0, max(0.0, value))


def resolve_landmark_id(name: str | int | LandmarkId) -> LandmarkId:
    if isinstance(name, LandmarkId):
        return name
    if isinstance(name, int):
        try:
            return LandmarkId(name)
        except ValueError:
            raise PoseDataError(f"Unknown landmark index {name!r}.") from None
    key = str(name).strip().replace("-", "_").lower()
    try:
        return _NAME_LOOKUP[key]
    except KeyError:
        raise PoseDataError(f"Unknown landmark name {name!r}.") from None


@dataclass
class Landmark:
    """One keypoint in frame units. Mutated in place by correction/smoothing."""

    x: float
    y: float
    z: Optional[float] = None
    confidence: float = 0.0

    def __post_init__(self) -> None:
        self.confidence = clamp01(self.confidence)

    def copy(self) -> "Landmark":
        return Landmark(self.x, self.y, self.z, self.confidence)

    def distance_to(self, other: "Landmark") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    @property
    def is_valid(self) -> bool:
        return self.confidence > VALID_LANDMARK_CONFIDENCE

    def as_tuple(self) -> Tuple[float, float, Optional[float], float]:
        return (self.x, self.y, self.z, self.confidence)


@dataclass
class Pose:
    """Seventeen landmarks plus an overall confidence and a monotonic timestamp (ms)."""

    landmarks: List[Landmark]
    confidence: float = 0.0
    timestamp: float = field(default_factory=monotonic_ms)

    def __post_init__(self) -> None:
        if len(self.landmarks) != LANDMARK_COUNT:
            raise PoseDataError(f"A pose needs exactly {LANDMARK_COUNT} landmarks; got {len(self.landmarks)}.")
        self.confidence = clamp01(self.confidence)

    def __getitem__(self, landmark_id: LandmarkId | str | int) -> Landmark:
        return self.landmarks[resolve_landmark_id(landmark_id)]

    def __setitem__(self, landmark_id: LandmarkId | str | int, landmark: Landmark) -> None:
        self.landmarks[resolve_landmark_id(landmark_id)] = landmark

    def __iter__(self) -> Iterator[Landmark]:
        return iter(self.landmarks)

    def items(self) -> Iterator[Tuple[LandmarkId, Landmark]]:
        for landmark_id in LandmarkId:
            yield landmark_id, self.landmarks[landmark_id]

    def copy(self, *, confidence: float | None = None, timestamp: float | None = None) -> "Pose":
        return Pose(
            [lm.copy() for lm in self.landmarks],
            confidence=self.confidence if confidence is None else confidence,
            timestamp=self.timestamp if timestamp is None else timestamp,
        )

    def valid_landmarks(self, threshold: float = VALID_LANDMARK_CONFIDENCE) -> List[Landmark]:
        return [lm for lm in self.landmarks if lm.confidence > threshold]

    def confidences(self) -> np.ndarray:
        return np.array([lm.confidence for lm in self.landmarks], dtype=float)

    def xy(self) -> np.ndarray:
        return np.array([[lm.x, lm.y] for lm in self.landmarks], dtype=float)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "landmarks": {
                landmark_id.wire_name: {"x": lm.x, "y": lm.y, "z": lm.z, "confidence": lm.confidence}
                for landmark_id, lm in self.items()
            },
        }


def _landmark_property(landmark_id: LandmarkId) -> property:
    def _get(self: Pose) -> Landmark:
        return self.landmarks[landmark_id]

    def _set(self: Pose, value: Landmark) -> None:
        self.landmarks[landmark_id] = value

    return property(_get, _set, doc=f"The {landmark_id.name.lower().replace('_', ' ')} landmark.")


for _lid in LandmarkId:
    setattr(Pose, _lid.name.lower(), _landmark_property(_lid))


def midpoint_y(a: Landmark, b: Landmark) -> float:
    return (a.y + b.y) / 2.0


def mean_displacement(current: Pose, previous: Pose) -> float:
    """Average planar landmark displacement between two poses."""
    deltas = np.linalg.norm(current.xy() - previous.xy(), axis=1)
    return float(np.mean(deltas))


def recent_mean_displacement(poses: Sequence[Pose]) -> float:
    """Average per-landmark frame-to-frame displacement across consecutive poses."""
    if len(poses) < 2:
        return 0.0
    steps = [mean_displacement(poses[i], poses[i - 1]) for i in range(1, len(poses))]
    return float(np.mean(steps))


def estimate_velocities(poses: Sequence[Pose]) -> Optional[np.ndarray]:
    """Per-landmark (vx, vy) in units per ms, averaged over consecutive pairs.

    Pairs with a non-positive time step are skipped but still count towards the
    ``n - 1`` divisor. Returns None when fewer than two poses are available.
    """
    if len(poses) < 2:
        return None
    total = np.zeros((LANDMARK_COUNT, 2), dtype=float)
    for i in range(1, len(poses)):
        elapsed = poses[i].timestamp - poses[i - 1].timestamp
        if elapsed <= 0:
            continue
        total += (poses[i].xy() - poses[i - 1].xy()) / elapsed
    return total / max(1, len(poses) - 1)


class PoseHistory:
    """Append-only, time-window-pruned sequence of poses (most recent last)."""

    def __init__(self, poses: Sequence[Pose] | None = None) -> None:
        self._poses: List[Pose] = list(poses or [])

    def __len__(self) -> int:
        return len(self._poses)

    def __iter__(self) -> Iterator[Pose]:
        return iter(self._poses)

    def __getitem__(self, index: int) -> Pose:
        return self._poses[index]

    def __bool__(self) -> bool:
        return bool(self._poses)

    @property
    def latest(self) -> Optional[Pose]:
        return self._poses[-1] if self._poses else None

    def append(self, pose: Pose) -> None:
        self._poses.append(pose)

    def recent(self, count: int) -> List[Pose]:
        return self._poses[-count:] if count > 0 else []

    def prune(self, now_ms: float, window_ms: float) -> int:
        """Drop entries whose age is not strictly below ``window_ms``; returns how many."""
        before = len(self._poses)
        self._poses = [pose for pose in self._poses if now_ms - pose.timestamp < window_ms]
        return before - len(self._poses)

    def clear(self) -> None:
        self._poses.clear()


def _coerce_float(value: Any, *, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise PoseDataError(f"{label} must be numeric; received {value!r}.") from None


def _landmark_from_raw(value: Any, *, label: str) -> Landmark:
    if isinstance(value, Landmark):
        candidate = value.copy()
    elif isinstance(value, Mapping):
        if "x" not in value or "y" not in value:
            raise PoseDataError(f"{label} is missing x/y coordinates.")
        conf = value.get("confidence", value.get("score", value.get("visibility", 0.0)))
        z = value.get("z")
        candidate = Landmark(
            _coerce_float(value["x"], label=f"{label}.x"),
            _coerce_float(value["y"], label=f"{label}.y"),
            None if z is None else _coerce_float(z, label=f"{label}.z"),
            _coerce_float(conf if conf is not None else 0.0, label=f"{label}.confidence"),
        )
    elif isinstance(value, (tuple, list)) and len(value) in (3, 4):
        nums = [_coerce_float(v, label=label) if v is not None else None for v in value]
        if len(nums) == 3:
            x, y, conf = nums
            z = None
        else:
            x, y, z, conf = nums
        if x is None or y is None:
            raise PoseDataError(f"{label} is missing x/y coordinates.")
        candidate = Landmark(x, y, z, conf if conf is not None else 0.0)
    else:
        raise PoseDataError(f"{label} must be a mapping or (x, y[, z], confidence) tuple; got {value!r}.")

    z_ok = candidate.z is None or math.isfinite(candidate.z)
    if not (math.isfinite(candidate.x) and math.isfinite(candidate.y) and z_ok):
        return Landmark(0.0, 0.0, None, 0.0)
    return candidate


def pose_from_raw(raw: Any, *, timestamp: float | None = None) -> Pose:
    """Normalise detector output into a `Pose`.

    Accepts a `Pose`, a mapping of landmark name to landmark, a sequence of 17
    landmarks in `LandmarkId` order, or a mapping wrapping either under
    ``"landmarks"`` (optionally with ``"confidence"`` and ``"timestamp"``).
    Landmarks the detector omitted are filled in with zero confidence, and
    names outside the 17-landmark set are ignored. Non-finite coordinates are
    replaced by a zero-confidence landmark at the origin, `Pose` input included.
    """
    if isinstance(raw, Pose):
        return Pose(
            [_landmark_from_raw(lm, label=lid.wire_name) for lid, lm in raw.items()],
            confidence=raw.confidence,
            timestamp=raw.timestamp,
        )

    overall: Any = None
    raw_ts: Any = None
    body: Any = raw
    if isinstance(raw, Mapping) and "landmarks" in raw:
        body = raw["landmarks"]
        overall = raw.get("confidence")
        raw_ts = raw.get("timestamp")

    landmarks: List[Landmark] = [Landmark(0.0, 0.0, None, 0.0) for _ in LandmarkId]
    if isinstance(body, np.ndarray):
        body = body.tolist()
    if isinstance(body, Mapping):
        known = 0
        for name, value in body.items():
            try:
                landmark_id = resolve_landmark_id(name)
            except PoseDataError:
                logger.debug("Ignoring unknown landmark %r in detector payload", name)
                continue
            landmarks[landmark_id] = _landmark_from_raw(value, label=landmark_id.wire_name)
            known += 1
        if not known:
            raise PoseDataError("Raw pose payload contains no known landmark names.")
    elif isinstance(body, Sequence) and not isinstance(body, (str, bytes)):
        if len(body) != LANDMARK_COUNT:
            raise PoseDataError(f"Expected {LANDMARK_COUNT} landmarks; got {len(body)}.")
        for landmark_id, value in zip(LandmarkId, body):
            landmarks[landmark_id] = _landmark_from_raw(value, label=landmark_id.wire_name)
    else:
        raise PoseDataError(f"Unsupported raw pose payload of type {type(raw).__name__}.")

    if overall is None:
        overall = float(np.mean([lm.confidence for lm in landmarks]))
    ts = raw_ts if raw_ts is not None else timestamp
    return Pose(
        landmarks,
        confidence=_coerce_float(overall, label="confidence"),
        timestamp=monotonic_ms() if ts is None else _coerce_float(ts, label="timestamp"),
    )


__all__ = [
    "LandmarkId",
    "LANDMARK_COUNT",
    "SYMMETRY_PAIRS",
    "VALID_LANDMARK_CONFIDENCE",
    "MIN_VALID_LANDMARKS",
    "Landmark",
    "Pose",
    "PoseHistory",
    "pose_from_raw",
    "resolve_landmark_id",
    "clamp01",
    "monotonic_ms",
    "midpoint_y",
    "mean_displacement",
    "recent_mean_displacement",
    "estimate_velocities",
]
