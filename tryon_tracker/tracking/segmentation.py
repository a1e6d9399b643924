"""Body-region segmentation and garment overlay constraints.

Segments are axis-aligned boxes derived from landmark geometry and painted into
a label raster (0 = background, k = k-th segment in insertion order). The
overlay helpers turn a mask into safe/avoid zones and anchor points for a
garment category.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from tryon_tracker.tracking.config import TRACKING_LOGGER as logger
from tryon_tracker.tracking.landmarks import Landmark, LandmarkId, Pose, midpoint_y

REQUIRED_SEGMENT_CONFIDENCE = 0.5
LIMB_POINT_CONFIDENCE = 0.3
CACHE_SIZE = 10


@dataclass(frozen=True)
class Bounds:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)

    def intersection_area(self, other: "Bounds") -> float:
        overlap_w = max(0.0, min(self.right, other.right) - max(self.left, other.left))
        overlap_h = max(0.0, min(self.bottom, other.bottom) - max(self.top, other.top))
        return overlap_w * overlap_h


@dataclass(frozen=True)
class BodySegment:
    id: str
    name: str
    landmarks: Tuple[LandmarkId, ...]
    bounds: Bounds
    confidence: float
    area: float


@dataclass(frozen=True)
class SegmentationMask:
    width: int
    height: int
    data: np.ndarray
    segments: Tuple[BodySegment, ...]

    def label_of(self, segment_id: str) -> Optional[int]:
        """1-based raster label for a segment id, or None if it was not detected."""
        for index, segment in enumerate(self.segments, start=1):
            if segment.id == segment_id:
                return index
        return None

    def segment(self, segment_id: str) -> Optional[BodySegment]:
        for segment in self.segments:
            if segment.id == segment_id:
                return segment
        return None


@dataclass(frozen=True)
class AnchorPoint:
    x: float
    y: float
    weight: float


@dataclass
class OverlayConstraints:
    safe_zones: List[BodySegment] = field(default_factory=list)
    avoid_zones: List[BodySegment] = field(default_factory=list)
    preferred_anchors: List[AnchorPoint] = field(default_factory=list)


@dataclass
class OverlayConflictReport:
    conflicts: List[BodySegment] = field(default_factory=list)
    overlap_percentage: float = 0.0
    recommended_adjustment: Optional[Tuple[float, float]] = None


def _head_segment(pose: Pose) -> Optional[BodySegment]:
    nose, left_ear, right_ear = pose.nose, pose.left_ear, pose.right_ear
    if nose.confidence < REQUIRED_SEGMENT_CONFIDENCE:
        return None
    head_width = abs(right_ear.x - left_ear.x) * 1.2
    head_height = head_width * 1.1
    center_x = (left_ear.x + right_ear.x) / 2.0
    center_y = nose.y - head_height * 0.3
    return BodySegment(
        id="head",
        name="Head",
        landmarks=(
            LandmarkId.NOSE,
            LandmarkId.LEFT_EAR,
            LandmarkId.RIGHT_EAR,
            LandmarkId.LEFT_EYE,
            LandmarkId.RIGHT_EYE,
        ),
        bounds=Bounds(
            center_x - head_width / 2.0,
            center_y - head_height / 2.0,
            center_x + head_width / 2.0,
            center_y + head_height / 2.0,
        ),
        confidence=(nose.confidence + left_ear.confidence + right_ear.confidence) / 3.0,
        area=head_width * head_height,
    )


def _torso_segment(pose: Pose) -> Optional[BodySegment]:
    ls, rs, lh, rh = pose.left_shoulder, pose.right_shoulder, pose.left_hip, pose.right_hip
    if ls.confidence < REQUIRED_SEGMENT_CONFIDENCE or rs.confidence < REQUIRED_SEGMENT_CONFIDENCE:
        return None
    shoulder_width = abs(rs.x - ls.x)
    torso_height = abs(midpoint_y(ls, rs) - midpoint_y(lh, rh))
    bounds = Bounds(
        min(ls.x, lh.x) - shoulder_width * 0.1,
        min(ls.y, rs.y) - torso_height * 0.1,
        max(rs.x, rh.x) + shoulder_width * 0.1,
        max(lh.y, rh.y) + torso_height * 0.1,
    )
    return BodySegment(
        id="torso",
        name="Torso",
        landmarks=(LandmarkId.LEFT_SHOULDER, LandmarkId.RIGHT_SHOULDER, LandmarkId.LEFT_HIP, LandmarkId.RIGHT_HIP),
        bounds=bounds,
        confidence=(ls.confidence + rs.confidence + lh.confidence + rh.confidence) / 4.0,
        area=bounds.area,
    )


def _limb_segment(
    segment_id: str,
    name: str,
    ids: Tuple[LandmarkId, LandmarkId, LandmarkId],
    pose: Pose,
    width_ratio: float,
) -> Optional[BodySegment]:
    root, joint, end = (pose[landmark_id] for landmark_id in ids)
    if root.confidence < REQUIRED_SEGMENT_CONFIDENCE or joint.confidence < REQUIRED_SEGMENT_CONFIDENCE:
        return None
    points: List[Landmark] = [p for p in (root, joint, end) if p.confidence > LIMB_POINT_CONFIDENCE]
    if len(points) < 2:
        return None
    pad = abs(root.x - end.x) * width_ratio / 2.0
    bounds = Bounds(
        min(p.x for p in points) - pad,
        min(p.y for p in points) - pad,
        max(p.x for p in points) + pad,
        max(p.y for p in points) + pad,
    )
    return BodySegment(
        id=segment_id,
        name=name,
        landmarks=ids,
        bounds=bounds,
        confidence=(root.confidence + joint.confidence + end.confidence) / 3.0,
        area=bounds.area,
    )


def identify_body_segments(pose: Pose) -> Tuple[BodySegment, ...]:
    candidates = (
        _head_segment(pose),
        _torso_segment(pose),
        _limb_segment(
            "leftArm", "Left Arm",
            (LandmarkId.LEFT_SHOULDER, LandmarkId.LEFT_ELBOW, LandmarkId.LEFT_WRIST), pose, 0.3,
        ),
        _limb_segment(
            "rightArm", "Right Arm",
            (LandmarkId.RIGHT_SHOULDER, LandmarkId.RIGHT_ELBOW, LandmarkId.RIGHT_WRIST), pose, 0.3,
        ),
        _limb_segment(
            "leftLeg", "Left Leg",
            (LandmarkId.LEFT_HIP, LandmarkId.LEFT_KNEE, LandmarkId.LEFT_ANKLE), pose, 0.4,
        ),
        _limb_segment(
            "rightLeg", "Right Leg",
            (LandmarkId.RIGHT_HIP, LandmarkId.RIGHT_KNEE, LandmarkId.RIGHT_ANKLE), pose, 0.4,
        ),
    )
    return tuple(segment for segment in candidates if segment is not None)


def _pixel_range(start: float, stop: float, limit: int) -> Tuple[int, int]:
    lo = max(0, math.floor(start)) if math.isfinite(start) else 0
    hi = min(limit, math.ceil(stop)) if math.isfinite(stop) else 0
    return lo, max(lo, hi)


def rasterize_segments(segments: Sequence[BodySegment], width: int, height: int) -> np.ndarray:
    """Paint each segment's box with its 1-based index; later segments win."""
    width = max(0, int(width))
    height = max(0, int(height))
    data = np.zeros((height, width), dtype=np.uint8)
    for label, segment in enumerate(segments, start=1):
        y0, y1 = _pixel_range(segment.bounds.top, segment.bounds.bottom, height)
        x0, x1 = _pixel_range(segment.bounds.left, segment.bounds.right, width)
        data[y0:y1, x0:x1] = label
    return data


def _top_center(bounds: Bounds, weight: float) -> AnchorPoint:
    return AnchorPoint(bounds.left + bounds.width * 0.5, bounds.top, weight)


def _bottom_center(bounds: Bounds, weight: float) -> AnchorPoint:
    return AnchorPoint(bounds.left + bounds.width * 0.5, bounds.bottom, weight)


def _side_centers(bounds: Bounds, weight: float) -> List[AnchorPoint]:
    mid_y = bounds.top + bounds.height * 0.5
    return [AnchorPoint(bounds.left, mid_y, weight), AnchorPoint(bounds.right, mid_y, weight)]


_UPPER_BODY = {
    "safe": ("torso", "leftArm", "rightArm"),
    "avoid": ("head", "leftLeg", "rightLeg"),
    "anchors": lambda b: [_top_center(b, 1.0), *_side_centers(b, 0.8)],
}

# Garment category -> zone ids and torso anchor builder. ``None`` means every
# segment that is not avoided.
CATEGORY_RULES: Dict[str, dict] = {
    "tops": _UPPER_BODY,
    "outerwear": _UPPER_BODY,
    "bottoms": {
        "safe": ("leftLeg", "rightLeg"),
        "avoid": ("head", "leftArm", "rightArm"),
        "anchors": lambda b: [_bottom_center(b, 1.0)],
    },
    "dresses": {
        "safe": None,
        "avoid": ("head",),
        "anchors": lambda b: [_top_center(b, 1.0), _bottom_center(b, 0.9)],
    },
}


class BodySegmentationEngine:
    """Per-session segmentation with a small insertion-ordered mask cache."""

    def __init__(self, cache_size: int = CACHE_SIZE) -> None:
        self.cache_size = cache_size
        self._cache: "OrderedDict[Tuple[float, int, int], SegmentationMask]" = OrderedDict()

    def segment_body(self, pose: Pose, frame_width: int = 400, frame_height: int = 600) -> SegmentationMask:
        """Segment ``pose`` into a read-only mask; masks are cached and shared between callers."""
        width = max(0, int(frame_width))
        height = max(0, int(frame_height))
        key = (pose.timestamp, width, height)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        segments = identify_body_segments(pose)
        data = rasterize_segments(segments, width, height)
        data.flags.writeable = False
        mask = SegmentationMask(width=width, height=height, data=data, segments=segments)
        self._cache[key] = mask
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        logger.debug("Segmented pose into %s regions: %s", len(segments), [s.id for s in segments])
        return mask

    def get_overlay_constraints(self, mask: SegmentationMask, category: str) -> OverlayConstraints:
        rules = CATEGORY_RULES.get(category)
        if rules is None:
            logger.warning("Unknown garment category %r; no overlay constraints applied", category)
            return OverlayConstraints()

        avoid_ids = rules["avoid"]
        safe_ids = rules["safe"]
        constraints = OverlayConstraints()
        for segment in mask.segments:
            if segment.id in avoid_ids:
                constraints.avoid_zones.append(segment)
            elif safe_ids is None or segment.id in safe_ids:
                constraints.safe_zones.append(segment)
        torso = mask.segment("torso")
        if torso is not None:
            constraints.preferred_anchors.extend(rules["anchors"](torso.bounds))
        return constraints

    def check_overlay_conflicts(
        self,
        overlay_bounds: Bounds,
        mask: SegmentationMask,
        category: str,
    ) -> OverlayConflictReport:
        """Measure how much of the overlay lands on avoid zones.

        When there is any conflict and the category defines anchors, the report
        carries the translation that moves the overlay centre onto the nearest
        anchor.
        """
        constraints = self.get_overlay_constraints(mask, category)
        report = OverlayConflictReport()
        total_overlap = 0.0
        for segment in constraints.avoid_zones:
            overlap = overlay_bounds.intersection_area(segment.bounds)
            if overlap > 0:
                report.conflicts.append(segment)
                total_overlap += overlap

        overlay_area = overlay_bounds.area
        report.overlap_percentage = total_overlap / overlay_area if overlay_area > 0 else 0.0

        if report.conflicts and constraints.preferred_anchors:
            cx, cy = overlay_bounds.center
            nearest = min(constraints.preferred_anchors, key=lambda a: math.hypot(a.x - cx, a.y - cy))
            report.recommended_adjustment = (nearest.x - cx, nearest.y - cy)
        return report

    def clear_cache(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


def plot_segmentation_mask(mask: SegmentationMask):
    """Render the label raster with one colour per segment for debugging."""
    import matplotlib

    matplotlib.use("Agg", force=False)
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(4, 6))
    ax.imshow(mask.data, cmap="tab10", vmin=0, vmax=max(len(mask.segments), 1), interpolation="nearest")
    for segment in mask.segments:
        b = segment.bounds
        ax.add_patch(
            plt.Rectangle((b.left, b.top), b.width, b.height, fill=False, edgecolor="white", linewidth=0.8)
        )
        ax.text(b.left, b.top, segment.id, color="white", fontsize=7, va="bottom")
    ax.set_xlim(0, mask.width)
    ax.set_ylim(mask.height, 0)
    ax.set_title("Body segmentation")
    return fig


__all__ = [
    "Bounds",
    "BodySegment",
    "SegmentationMask",
    "AnchorPoint",
    "OverlayConstraints",
    "OverlayConflictReport",
    "BodySegmentationEngine",
    "CATEGORY_RULES",
    "identify_body_segments",
    "rasterize_segments",
    "plot_segmentation_mask",
]
