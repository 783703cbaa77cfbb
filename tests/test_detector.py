"""Tests for the subject detector backends and their pre/post-processing."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from resizesuite.config import Settings
from resizesuite.crop.planner import SmartCropPlanner
from resizesuite.errors import DetectorUnavailable
from resizesuite.imaging.raster import RasterImage
from resizesuite.ml.detector import (
    BoundingBox,
    NullDetector,
    OnnxSubjectDetector,
    SubjectType,
    build_detector,
)
from resizesuite.ml.preprocessing import (
    non_max_suppression,
    prepare_ssd_input,
    prepare_ultraface_input,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "detection_enabled": True,
        "face_score_threshold": 0.7,
        "object_score_threshold": 0.5,
        "nms_iou_threshold": 0.3,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _image(width: int = 200, height: int = 100) -> RasterImage:
    return RasterImage(pixels=np.full((height, width, 3), 128, dtype=np.uint8))


def _named(name: str) -> MagicMock:
    meta = MagicMock()
    meta.name = name
    return meta


def _face_session() -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [_named("input")]
    scores = np.array([[[0.1, 0.9], [0.8, 0.2], [0.05, 0.95]]], dtype=np.float32)
    boxes = np.array([[[0.1, 0.1, 0.3, 0.5], [0.0, 0.0, 1.0, 1.0], [0.11, 0.1, 0.31, 0.5]]], dtype=np.float32)
    session.run.return_value = [scores, boxes]
    return session


def _object_session() -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [_named("inputs")]
    session.get_outputs.return_value = [
        _named("detection_boxes:0"),
        _named("detection_classes:0"),
        _named("detection_scores:0"),
        _named("num_detections:0"),
    ]
    session.run.return_value = [
        np.array([[[0.1, 0.2, 0.5, 0.6], [0.0, 0.0, 1.0, 1.0]]], dtype=np.float32),
        np.array([[18, 1]], dtype=np.float32),
        np.array([[0.9, 0.3]], dtype=np.float32),
        np.array([2], dtype=np.float32),
    ]
    return session


def _manager(**sessions: MagicMock) -> MagicMock:
    manager = MagicMock()
    manager.get_session.side_effect = lambda name: sessions[name]
    return manager


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


class TestBoundingBox:
    def test_touching_boxes_do_not_intersect(self) -> None:
        assert not BoundingBox(0, 0, 10, 10).intersects(BoundingBox(10, 0, 10, 10))

    def test_overlap(self) -> None:
        a = BoundingBox(0, 0, 10, 10)
        b = BoundingBox(5, 5, 10, 10)
        assert a.intersects(b)
        assert a.intersection_area(b) == 25
        assert a.union(b) == BoundingBox(0, 0, 15, 15)

    def test_expanded(self) -> None:
        assert BoundingBox(10, 10, 10, 20).expanded(0.5) == BoundingBox(5, 0, 20, 40)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class TestNullDetector:
    def test_always_unavailable(self) -> None:
        detector = NullDetector()
        with pytest.raises(DetectorUnavailable):
            detector.detect_faces(_image())
        with pytest.raises(DetectorUnavailable) as exc_info:
            detector.detect_objects(_image())
        assert exc_info.value.kind == "detector_unavailable"


class TestBuildDetector:
    def test_detection_is_off_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("RESIZESUITE_DETECTION_ENABLED", raising=False)
        settings = Settings()
        assert settings.detection_enabled is False
        assert isinstance(build_detector(settings), NullDetector)

    def test_disabled_gives_null_detector(self) -> None:
        assert isinstance(build_detector(_make_settings(detection_enabled=False)), NullDetector)

    def test_enabled_gives_onnx_detector(self) -> None:
        assert isinstance(build_detector(_make_settings()), OnnxSubjectDetector)


class TestOnnxSubjectDetector:
    def test_faces_thresholded_and_suppressed(self) -> None:
        settings = _make_settings()
        detector = OnnxSubjectDetector(settings, _manager(ultraface_rfb_320=_face_session()))

        faces = detector.detect_faces(_image(200, 100))

        assert len(faces) == 1
        face = faces[0]
        assert face.type is SubjectType.FACE
        assert face.score == pytest.approx(0.95)
        assert face.bbox.x == pytest.approx(22)
        assert face.bbox.y == pytest.approx(10)
        assert face.bbox.width == pytest.approx(40)
        assert face.bbox.height == pytest.approx(40)

    def test_face_input_tensor(self) -> None:
        session = _face_session()
        detector = OnnxSubjectDetector(_make_settings(), _manager(ultraface_rfb_320=session))
        detector.detect_faces(_image())

        feed = session.run.call_args.args[1]
        assert feed["input"].shape == (1, 3, 240, 320)
        assert feed["input"].dtype == np.float32

    def test_objects_decoded_with_labels(self) -> None:
        detector = OnnxSubjectDetector(_make_settings(), _manager(ssd_mobilenet_v1=_object_session()))

        objects = detector.detect_objects(_image(200, 100))

        assert len(objects) == 1
        subject = objects[0]
        assert subject.type is SubjectType.OBJECT
        assert subject.label == "dog"
        assert (subject.bbox.x, subject.bbox.y) == pytest.approx((40, 10))
        assert (subject.bbox.width, subject.bbox.height) == pytest.approx((80, 40))

    def test_object_detection_disabled(self) -> None:
        manager = MagicMock()
        detector = OnnxSubjectDetector(_make_settings(object_detection_model=None), manager)
        assert detector.detect_objects(_image()) == []
        manager.get_session.assert_not_called()

    def test_load_failure_latches(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = RuntimeError("download failed")
        detector = OnnxSubjectDetector(_make_settings(), manager)

        with pytest.raises(DetectorUnavailable, match="download failed"):
            detector.detect_faces(_image())
        assert not detector.available

        with pytest.raises(DetectorUnavailable):
            detector.detect_objects(_image())
        manager.get_session.assert_called_once()

    def test_inference_failure_becomes_unavailable(self) -> None:
        session = _face_session()
        session.run.side_effect = RuntimeError("bad input")
        detector = OnnxSubjectDetector(_make_settings(), _manager(ultraface_rfb_320=session))

        with pytest.raises(DetectorUnavailable):
            detector.detect_faces(_image())
        assert not detector.available


    def test_malformed_face_outputs_become_unavailable(self) -> None:
        session = _face_session()
        session.run.return_value = [np.zeros((1, 5, 3), dtype=np.float32), np.zeros((1, 5, 4), dtype=np.float32)]
        detector = OnnxSubjectDetector(_make_settings(), _manager(ultraface_rfb_320=session))

        with pytest.raises(DetectorUnavailable, match="Face detection failed"):
            detector.detect_faces(_image())
        assert not detector.available

    def test_missing_object_output_becomes_unavailable(self) -> None:
        session = _object_session()
        session.get_outputs.return_value = [_named("detection_boxes:0"), _named("detection_classes:0")]
        session.run.return_value = session.run.return_value[:2]
        detector = OnnxSubjectDetector(_make_settings(), _manager(ssd_mobilenet_v1=session))

        with pytest.raises(DetectorUnavailable, match="Object detection failed"):
            detector.detect_objects(_image())

    def test_planner_falls_back_on_malformed_outputs(self) -> None:
        session = _face_session()
        session.run.return_value = [np.zeros((1, 5, 3), dtype=np.float32), np.zeros((1, 5, 4), dtype=np.float32)]
        settings = _make_settings()
        detector = OnnxSubjectDetector(settings, _manager(ultraface_rfb_320=session))

        result = SmartCropPlanner(detector, settings).plan(_image(200, 100), "1:1")

        assert result.used_fallback
        assert result.confidence == 0.0
        assert (result.crop_area.width, result.crop_area.height) == pytest.approx((80, 80))

# ---------------------------------------------------------------------------
# Pre/post-processing
# ---------------------------------------------------------------------------


class TestPreprocessing:
    def test_ultraface_input_range(self) -> None:
        tensor = prepare_ultraface_input(_image())
        assert tensor.shape == (1, 3, 240, 320)
        assert tensor.min() >= -1.0
        assert tensor.max() <= 1.0

    def test_ssd_input_downscales_long_side(self) -> None:
        tensor = prepare_ssd_input(_image(1280, 720))
        assert tensor.shape == (1, 360, 640, 3)
        assert tensor.dtype == np.uint8

    def test_ssd_input_small_image_untouched(self) -> None:
        assert prepare_ssd_input(_image(64, 48)).shape == (1, 48, 64, 3)

    def test_ssd_input_drops_alpha(self) -> None:
        image = RasterImage(pixels=np.zeros((10, 10, 4), dtype=np.uint8))
        assert prepare_ssd_input(image).shape == (1, 10, 10, 3)


class TestNonMaxSuppression:
    def test_overlapping_boxes_keep_best(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [1, 1, 11, 11], [50, 50, 60, 60]], dtype=np.float32)
        scores = np.array([0.6, 0.9, 0.7], dtype=np.float32)
        assert non_max_suppression(boxes, scores, 0.3) == [1, 2]

    def test_empty(self) -> None:
        empty = np.zeros((0, 4), dtype=np.float32)
        assert non_max_suppression(empty, np.zeros(0, dtype=np.float32), 0.5) == []
