"""Subject detection capability.

The crop planner only depends on the ``SubjectDetector`` protocol. Two
implementations ship here: ``NullDetector`` for hosts without inference
support, and ``OnnxSubjectDetector`` backed by ONNX Runtime sessions from the
model manager.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import numpy as np

from resizesuite.errors import DetectorUnavailable
from resizesuite.ml.preprocessing import (
    COCO_LABELS,
    non_max_suppression,
    prepare_ssd_input,
    prepare_ultraface_input,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from resizesuite.config import Settings
    from resizesuite.imaging.raster import RasterImage
    from resizesuite.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class SubjectType(StrEnum):
    FACE = "face"
    OBJECT = "object"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in source pixel coordinates."""

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

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def intersects(self, other: BoundingBox) -> bool:
        return self.x < other.right and other.x < self.right and self.y < other.bottom and other.y < self.bottom

    def intersection_area(self, other: BoundingBox) -> float:
        w = min(self.right, other.right) - max(self.x, other.x)
        h = min(self.bottom, other.bottom) - max(self.y, other.y)
        return max(0.0, w) * max(0.0, h)

    def union(self, other: BoundingBox) -> BoundingBox:
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return BoundingBox(x, y, max(self.right, other.right) - x, max(self.bottom, other.bottom) - y)

    def expanded(self, fraction: float) -> BoundingBox:
        dx = self.width * fraction
        dy = self.height * fraction
        return BoundingBox(self.x - dx, self.y - dy, self.width + 2 * dx, self.height + 2 * dy)


@dataclass(frozen=True)
class DetectedSubject:
    """A detected face or object with its confidence score in [0, 1]."""

    type: SubjectType
    bbox: BoundingBox
    score: float
    label: str | None = None


class SubjectDetector(Protocol):
    """Protocol for subject detection backends."""

    def detect_faces(self, image: RasterImage) -> list[DetectedSubject]:
        """Detect faces.

        Raises:
            DetectorUnavailable: If the backend cannot run.
        """
        ...

    def detect_objects(self, image: RasterImage) -> list[DetectedSubject]:
        """Detect generic objects.

        Raises:
            DetectorUnavailable: If the backend cannot run.
        """
        ...


class NullDetector:
    """Detector for hosts without inference support."""

    def detect_faces(self, image: RasterImage) -> list[DetectedSubject]:
        raise DetectorUnavailable("Subject detection is disabled")

    def detect_objects(self, image: RasterImage) -> list[DetectedSubject]:
        raise DetectorUnavailable("Subject detection is disabled")


class OnnxSubjectDetector:
    """Face and object detection on ONNX Runtime.

    Faces use an UltraFace-style model (``scores`` Nx2, ``boxes`` Nx4 in
    normalized corner form). Objects use an SSD-MobileNet style model with
    ``detection_boxes`` / ``detection_classes`` / ``detection_scores`` outputs.
    The first load or inference failure marks the backend unavailable for the
    rest of the process lifetime.
    """

    def __init__(self, settings: Settings, model_manager: ModelManager) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._lock = threading.Lock()
        self._failure: str | None = None

    @property
    def available(self) -> bool:
        with self._lock:
            return self._failure is None

    def detect_faces(self, image: RasterImage) -> list[DetectedSubject]:
        session = self._session(self._settings.face_detection_model)
        tensor = prepare_ultraface_input(image)
        try:
            input_name = session.get_inputs()[0].name
            scores, boxes = session.run(None, {input_name: tensor})[:2]
            return self._decode_faces(np.asarray(scores), np.asarray(boxes), image.width, image.height)
        except Exception as exc:
            self._mark_failed(f"face inference failed: {exc}")
            raise DetectorUnavailable(f"Face detection failed: {exc}") from exc

    def detect_objects(self, image: RasterImage) -> list[DetectedSubject]:
        model_name = self._settings.object_detection_model
        if model_name is None:
            return []
        session = self._session(model_name)
        tensor = prepare_ssd_input(image)
        try:
            input_name = session.get_inputs()[0].name
            outputs = {
                meta.name: value
                for meta, value in zip(session.get_outputs(), session.run(None, {input_name: tensor}), strict=True)
            }
            return self._decode_objects(outputs, image.width, image.height)
        except Exception as exc:
            self._mark_failed(f"object inference failed: {exc}")
            raise DetectorUnavailable(f"Object detection failed: {exc}") from exc

    # -- Internal -----------------------------------------------------------

    def _session(self, model_name: str) -> InferenceSession:
        with self._lock:
            failure = self._failure
        if failure is not None:
            raise DetectorUnavailable(f"Detector disabled after earlier failure ({failure})")
        try:
            return self._model_manager.get_session(model_name)
        except Exception as exc:
            self._mark_failed(f"could not load {model_name}: {exc}")
            raise DetectorUnavailable(f"Model {model_name} is unavailable: {exc}") from exc

    def _mark_failed(self, reason: str) -> None:
        with self._lock:
            if self._failure is None:
                self._failure = reason
                logger.warning("Subject detector unavailable: %s", reason)

    def _decode_faces(
        self,
        scores: NDArray[np.float32],
        boxes: NDArray[np.float32],
        width: int,
        height: int,
    ) -> list[DetectedSubject]:
        face_scores = scores.reshape(-1, 2)[:, 1]
        corners = boxes.reshape(-1, 4)
        keep = face_scores >= self._settings.face_score_threshold
        face_scores, corners = face_scores[keep], corners[keep]
        if face_scores.size == 0:
            return []

        scale = np.array([width, height, width, height], dtype=np.float32)
        pixel_boxes = np.clip(corners * scale, 0, scale)
        selected = non_max_suppression(pixel_boxes, face_scores, self._settings.nms_iou_threshold)
        return [
            DetectedSubject(
                type=SubjectType.FACE,
                bbox=_to_bbox(pixel_boxes[i]),
                score=float(face_scores[i]),
            )
            for i in selected
        ]

    def _decode_objects(self, outputs: dict[str, NDArray], width: int, height: int) -> list[DetectedSubject]:
        boxes = _output(outputs, "detection_boxes").reshape(-1, 4)
        classes = _output(outputs, "detection_classes").reshape(-1)
        scores = _output(outputs, "detection_scores").reshape(-1)
        count = len(scores)
        if any(name.startswith("num_detections") for name in outputs):
            count = min(count, int(_output(outputs, "num_detections").reshape(-1)[0]))

        subjects: list[DetectedSubject] = []
        for i in range(count):
            score = float(scores[i])
            if score < self._settings.object_score_threshold:
                continue
            y1, x1, y2, x2 = (float(v) for v in boxes[i])
            corners = np.array(
                [x1 * width, y1 * height, x2 * width, y2 * height],
                dtype=np.float32,
            )
            corners = np.clip(corners, 0, [width, height, width, height])
            class_id = int(classes[i])
            label = COCO_LABELS[class_id] if 0 <= class_id < len(COCO_LABELS) else None
            subjects.append(
                DetectedSubject(type=SubjectType.OBJECT, bbox=_to_bbox(corners), score=score, label=label)
            )
        return subjects


def _output(outputs: dict[str, NDArray], prefix: str) -> NDArray:
    for name, value in outputs.items():
        if name.startswith(prefix):
            return np.asarray(value)
    raise DetectorUnavailable(f"Model output '{prefix}' not found (got {sorted(outputs)})")


def _to_bbox(corners: NDArray[np.float32]) -> BoundingBox:
    x1, y1, x2, y2 = (float(v) for v in corners)
    return BoundingBox(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1))


def build_detector(settings: Settings) -> SubjectDetector:
    """Return the configured detector, or a NullDetector when detection is off."""
    if not settings.detection_enabled:
        return NullDetector()

    from resizesuite.ml.model_manager import OnnxModelManager

    return OnnxSubjectDetector(settings, OnnxModelManager(settings))
