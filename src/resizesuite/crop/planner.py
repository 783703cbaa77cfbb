"""Smart crop planning.

Detections are merged into a weighted interest set, clustered, and the
heaviest cluster is framed around its weighted centroid. Without usable
detections the planner falls back to a centered box. Every rectangle, whether
planned here or dragged by a user, goes through ``clamp_crop_area``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from resizesuite.errors import DetectorUnavailable
from resizesuite.ml.detector import BoundingBox, DetectedSubject, SubjectType

if TYPE_CHECKING:
    from resizesuite.config import Settings
    from resizesuite.imaging.raster import RasterImage
    from resizesuite.ml.detector import SubjectDetector

logger = logging.getLogger(__name__)

GOLDEN_RATIO: float = (1 + math.sqrt(5)) / 2

_NAMED_RATIOS: dict[str, float] = {
    "square": 1.0,
    "golden": GOLDEN_RATIO,
}


@dataclass(frozen=True)
class CropArea:
    """Crop rectangle in source pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def as_box(self) -> BoundingBox:
        return BoundingBox(self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class SmartCropResult:
    crop_area: CropArea
    detected_subjects: tuple[DetectedSubject, ...] = ()
    confidence: float = 0.0
    used_fallback: bool = False


@dataclass
class _Cluster:
    region: BoundingBox
    members: list[tuple[DetectedSubject, float]] = field(default_factory=list)

    @classmethod
    def seed(cls, subject: DetectedSubject, weight: float) -> _Cluster:
        return cls(region=subject.bbox, members=[(subject, weight)])

    @property
    def weight(self) -> float:
        return sum(w for _, w in self.members)

    def add(self, subject: DetectedSubject, weight: float) -> None:
        self.members.append((subject, weight))
        self.region = self.region.union(subject.bbox)

    def centroid(self) -> tuple[float, float]:
        total = self.weight
        cx = sum(s.bbox.center[0] * w for s, w in self.members) / total
        cy = sum(s.bbox.center[1] * w for s, w in self.members) / total
        return cx, cy


def _finite(value: float, default: float = 0.0) -> float:
    return value if math.isfinite(value) else default


def clamp_crop_area(area: CropArea, image_width: float, image_height: float) -> CropArea:
    """Force ``area`` inside ``[0, image_width] x [0, image_height]``.

    Oversized boxes shrink to the image, never pad. Negative or non-finite
    sizes collapse to zero. Applying the clamp twice gives the same result.
    """
    width = min(max(_finite(area.width), 0.0), image_width)
    height = min(max(_finite(area.height), 0.0), image_height)
    x = min(max(_finite(area.x), 0.0), image_width - width)
    y = min(max(_finite(area.y), 0.0), image_height - height)
    return CropArea(x=x, y=y, width=width, height=height)


def move_crop(area: CropArea, dx: float, dy: float, image_width: float, image_height: float) -> CropArea:
    """Drag a crop box, keeping its size while it fits."""
    moved = CropArea(x=area.x + dx, y=area.y + dy, width=area.width, height=area.height)
    return clamp_crop_area(moved, image_width, image_height)


def resize_crop(
    area: CropArea,
    width: float,
    height: float,
    image_width: float,
    image_height: float,
    aspect_ratio: float | None = None,
) -> CropArea:
    """Resize a crop box around its center.

    With ``aspect_ratio`` the height follows the width, and the box shrinks
    uniformly if it no longer fits.
    """
    if aspect_ratio is not None:
        height = width / aspect_ratio
        width, height = _fit_uniform(width, height, image_width, image_height)
    cx = area.x + area.width / 2
    cy = area.y + area.height / 2
    resized = CropArea(x=cx - width / 2, y=cy - height / 2, width=width, height=height)
    return clamp_crop_area(resized, image_width, image_height)


def parse_aspect_ratio(value: str | float | None) -> float | None:
    """Parse ``"16:9"``, ``"1.5"``, ``"golden"`` or a number into width/height.

    ``None``, ``""`` and ``"free"`` mean no constraint.
    """
    if value is None:
        return None
    if isinstance(value, int | float):
        ratio = float(value)
    else:
        text = value.strip().lower()
        if text in ("", "free", "none", "original"):
            return None
        if text in _NAMED_RATIOS:
            return _NAMED_RATIOS[text]
        try:
            if ":" in text:
                w_text, h_text = text.split(":", 1)
                w, h = float(w_text), float(h_text)
                if h == 0:
                    raise ValueError
                ratio = w / h
            else:
                ratio = float(text)
        except ValueError:
            raise ValueError(f"Invalid aspect ratio: {value!r}") from None
    if not math.isfinite(ratio) or ratio <= 0:
        raise ValueError(f"Aspect ratio must be positive, got {value!r}")
    return ratio


def _fit_uniform(width: float, height: float, max_width: float, max_height: float) -> tuple[float, float]:
    if width <= max_width and height <= max_height:
        return width, height
    scale = min(max_width / width, max_height / height)
    return width * scale, height * scale


def fallback_crop(
    image_width: int,
    image_height: int,
    aspect_ratio: float | None,
    scale: float,
) -> CropArea:
    """Centered default crop.

    Square at ``scale`` of the shorter side, or the largest ``aspect_ratio``
    box that fits, shrunk by ``scale``.
    """
    if aspect_ratio is None:
        side = scale * min(image_width, image_height)
        width = height = side
    else:
        if image_width / image_height > aspect_ratio:
            width, height = image_height * aspect_ratio, float(image_height)
        else:
            width, height = float(image_width), image_width / aspect_ratio
        width, height = width * scale, height * scale
    area = CropArea(
        x=(image_width - width) / 2,
        y=(image_height - height) / 2,
        width=width,
        height=height,
    )
    return clamp_crop_area(area, image_width, image_height)


def _weight(subject: DetectedSubject, settings: Settings) -> float:
    multiplier = settings.face_weight if subject.type is SubjectType.FACE else settings.object_weight
    return subject.score * multiplier


def _usable(subject: DetectedSubject, image_box: BoundingBox, settings: Settings) -> DetectedSubject | None:
    """Clip a detection to the image, or drop it if it is weak or empty."""
    if not math.isfinite(subject.score) or subject.score <= 0 or subject.score < settings.min_detection_score:
        return None
    box = subject.bbox
    if not all(math.isfinite(v) for v in (box.x, box.y, box.width, box.height)):
        return None
    x1, y1 = max(box.x, 0.0), max(box.y, 0.0)
    x2, y2 = min(box.right, image_box.width), min(box.bottom, image_box.height)
    if x2 <= x1 or y2 <= y1:
        return None
    clipped = BoundingBox(x1, y1, x2 - x1, y2 - y1)
    return DetectedSubject(type=subject.type, bbox=clipped, score=min(subject.score, 1.0), label=subject.label)


def _cluster(weighted: list[tuple[DetectedSubject, float]], padding: float) -> list[_Cluster]:
    clusters: list[_Cluster] = []
    for subject, weight in sorted(weighted, key=lambda item: item[1], reverse=True):
        touching = [c for c in clusters if c.region.expanded(padding).intersects(subject.bbox)]
        if touching:
            max(touching, key=lambda c: c.weight).add(subject, weight)
        else:
            clusters.append(_Cluster.seed(subject, weight))
    return clusters


def plan_crop(
    image_width: int,
    image_height: int,
    detections: list[DetectedSubject],
    settings: Settings,
    aspect_ratio: float | None = None,
) -> SmartCropResult:
    """Plan a crop from already-computed detections."""
    image_box = BoundingBox(0.0, 0.0, float(image_width), float(image_height))
    considered = [s for s in (_usable(d, image_box, settings) for d in detections) if s is not None]
    weighted = [(s, _weight(s, settings)) for s in considered]

    if not weighted:
        area = fallback_crop(image_width, image_height, aspect_ratio, settings.fallback_crop_scale)
        logger.debug("No usable detections, using centered fallback %s", area)
        return SmartCropResult(crop_area=area, detected_subjects=(), confidence=0.0, used_fallback=True)

    best = max(_cluster(weighted, settings.crop_padding), key=lambda c: c.weight)
    cx, cy = best.centroid()
    region = best.region.expanded(settings.crop_padding)

    # Symmetric around the centroid so the subject stays centered.
    width = 2 * max(cx - region.x, region.right - cx)
    height = 2 * max(cy - region.y, region.bottom - cy)
    if aspect_ratio is not None:
        if width / height > aspect_ratio:
            height = width / aspect_ratio
        else:
            width = height * aspect_ratio
        width, height = _fit_uniform(width, height, image_width, image_height)
    else:
        width, height = min(width, image_width), min(height, image_height)

    area = clamp_crop_area(
        CropArea(x=cx - width / 2, y=cy - height / 2, width=width, height=height),
        image_width,
        image_height,
    )

    total = sum(w for _, w in weighted)
    inside = sum(w for s, w in weighted if s.bbox.intersects(area.as_box()))
    confidence = min(1.0, inside / total) if total > 0 else 0.0

    logger.debug(
        "Planned crop %s from %d detections (%d in chosen cluster), confidence=%.3f",
        area,
        len(considered),
        len(best.members),
        confidence,
    )
    return SmartCropResult(crop_area=area, detected_subjects=tuple(considered), confidence=confidence)


class SmartCropPlanner:
    """Runs the detector and plans a crop, falling back when detection is unavailable."""

    def __init__(self, detector: SubjectDetector, settings: Settings) -> None:
        self._detector = detector
        self._settings = settings

    def detect(self, image: RasterImage) -> list[DetectedSubject]:
        """Collect faces and objects, treating an unavailable backend as no detections."""
        subjects: list[DetectedSubject] = []
        for detect in (self._detector.detect_faces, self._detector.detect_objects):
            try:
                subjects.extend(detect(image))
            except DetectorUnavailable as exc:
                logger.info("Subject detection skipped: %s", exc.message)
        return subjects

    def plan(self, image: RasterImage, aspect_ratio: str | float | None = None) -> SmartCropResult:
        ratio = parse_aspect_ratio(aspect_ratio)
        return plan_crop(image.width, image.height, self.detect(image), self._settings, ratio)
