"""Per-file pipeline: decode, run the configured steps, encode."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from resizesuite.crop.planner import SmartCropPlanner, SmartCropResult
from resizesuite.crop.shapes import apply_crop_shape
from resizesuite.errors import InvalidInput
from resizesuite.filters.engine import FilterEngine
from resizesuite.imaging import geometry
from resizesuite.imaging.encoder import compression_ratio, convert
from resizesuite.imaging.raster import ImageFormat, RasterImage, decode
from resizesuite.ml.detector import NullDetector
from resizesuite.pipeline.operations import CropStep, FilterStep, PipelineConfig, ResizeStep, RotateStep

if TYPE_CHECKING:
    from resizesuite.config import Settings
    from resizesuite.ml.detector import SubjectDetector
    from resizesuite.pipeline.operations import Step
    from resizesuite.validation import SourceFile

logger = logging.getLogger(__name__)

# Used when the source format is unknown and none was requested.
DEFAULT_OUTPUT_FORMAT = ImageFormat.PNG


@dataclass(frozen=True)
class ProcessedFile:
    """Encoded result of one pipeline run."""

    source_name: str
    filename: str
    data: bytes
    format: ImageFormat
    width: int
    height: int
    original_size: int
    compression_ratio: float
    smart_crop: SmartCropResult | None = None

    @property
    def processed_size(self) -> int:
        return len(self.data)

    @property
    def mime_type(self) -> str:
        return self.format.mime_type


class ImagePipeline:
    """Runs one file through the configured steps.

    The instance holds no per-image state, so one pipeline can serve several
    worker threads. Oil-painting jitter draws from a generator created per
    call from ``seed`` (fresh entropy when ``seed`` is None).
    """

    def __init__(
        self,
        settings: Settings,
        detector: SubjectDetector | None = None,
        seed: int | None = None,
    ) -> None:
        self._settings = settings
        self._planner = SmartCropPlanner(detector or NullDetector(), settings)
        self._filters = FilterEngine(settings)
        self._seed = seed

    def process(
        self,
        source: SourceFile,
        config: PipelineConfig,
        rng: np.random.Generator | None = None,
    ) -> ProcessedFile:
        """Decode ``source``, apply ``config`` and encode.

        Raises:
            ProcessingError: Any taxonomy error raised by a stage.
        """
        image = decode(source.data, source.content_type, max_pixels=self._settings.max_image_pixels)
        generator = rng if rng is not None else np.random.default_rng(self._seed)

        smart_crop: SmartCropResult | None = None
        for step in config.steps:
            image, crop_result = self._apply(step, image, generator)
            smart_crop = crop_result or smart_crop

        output = config.output
        target = output.format or image.source_format or DEFAULT_OUTPUT_FORMAT
        quality = output.quality
        if quality is None:
            resize_quality = [s.quality for s in config.steps if isinstance(s, ResizeStep) and s.quality is not None]
            quality = resize_quality[-1] if resize_quality else None
        encoded = convert(
            image,
            target,
            self._settings,
            quality,
            preserve_transparency=output.preserve_transparency,
        )

        suffix = config.filename_suffix(image.source_format, encoded.format)
        filename = f"{source.stem}{suffix}{encoded.format.extension}"
        logger.info(
            "Processed %s -> %s (%dx%d, %d -> %d bytes)",
            source.name,
            filename,
            encoded.width,
            encoded.height,
            source.size,
            encoded.size,
        )
        return ProcessedFile(
            source_name=source.name,
            filename=filename,
            data=encoded.data,
            format=encoded.format,
            width=encoded.width,
            height=encoded.height,
            original_size=source.size,
            compression_ratio=compression_ratio(source.size, encoded.size),
            smart_crop=smart_crop,
        )

    def _apply(
        self,
        step: Step,
        image: RasterImage,
        rng: np.random.Generator,
    ) -> tuple[RasterImage, SmartCropResult | None]:
        if isinstance(step, ResizeStep):
            return geometry.resize(image, step).image, None
        if isinstance(step, RotateStep):
            rotated = geometry.rotate(
                image,
                step.angle,
                flip_horizontal=step.flip_horizontal,
                flip_vertical=step.flip_vertical,
            )
            return rotated, None
        if isinstance(step, CropStep):
            return self._crop(step, image)
        if isinstance(step, FilterStep):
            filtered = self._filters.apply(image, step.preset, step.custom, step.intensity, rng)
            return filtered, None
        raise InvalidInput(f"Unknown pipeline step: {step!r}")

    def _crop(self, step: CropStep, image: RasterImage) -> tuple[RasterImage, SmartCropResult | None]:
        if step.area is not None:
            return apply_crop_shape(image, step.area, step.shape), None
        try:
            result = self._planner.plan(image, step.aspect_ratio)
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc
        logger.debug(
            "Smart crop %s (confidence=%.2f, fallback=%s)",
            result.crop_area,
            result.confidence,
            result.used_fallback,
        )
        return apply_crop_shape(image, result.crop_area, step.shape), result
