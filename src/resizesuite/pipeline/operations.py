"""Step models describing one file's processing.

A pipeline is an ordered list of steps followed by exactly one output step,
so every path ends in the encoder.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from resizesuite.crop.planner import CropArea, parse_aspect_ratio
from resizesuite.crop.shapes import CropShape
from resizesuite.filters.config import FilterConfig, get_preset
from resizesuite.imaging.geometry import ResizeOptions
from resizesuite.imaging.raster import ImageFormat


class ResizeStep(ResizeOptions):
    kind: Literal["resize"] = "resize"


class RotateStep(BaseModel):
    kind: Literal["rotate"] = "rotate"
    angle: float = 0.0
    flip_horizontal: bool = False
    flip_vertical: bool = False


class CropStep(BaseModel):
    """Manual crop when ``area`` is set, smart crop otherwise."""

    kind: Literal["crop"] = "crop"
    area: CropArea | None = None
    aspect_ratio: str | None = None
    shape: CropShape = CropShape.RECTANGLE

    @field_validator("aspect_ratio")
    @classmethod
    def _check_ratio(cls, value: str | None) -> str | None:
        parse_aspect_ratio(value)
        return value

    @property
    def is_smart(self) -> bool:
        return self.area is None


class FilterStep(BaseModel):
    kind: Literal["filter"] = "filter"
    preset: str | None = None
    custom: FilterConfig | None = None
    intensity: float = Field(default=100.0, ge=0, le=100)

    @field_validator("preset")
    @classmethod
    def _check_preset(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                get_preset(value)
            except KeyError as exc:
                raise ValueError(str(exc.args[0])) from None
        return value


class OutputStep(BaseModel):
    """Target encoding. ``format=None`` keeps the source format."""

    format: ImageFormat | None = None
    quality: float | None = Field(default=None, ge=0.1, le=1.0)
    preserve_transparency: bool = True

    @field_validator("format", mode="before")
    @classmethod
    def _parse_format(cls, value: object) -> object:
        if isinstance(value, str):
            return ImageFormat.parse(value)
        return value


Step = Annotated[ResizeStep | RotateStep | CropStep | FilterStep, Field(discriminator="kind")]

STEP_SUFFIXES: dict[str, str] = {
    "resize": "_resized",
    "rotate": "_rotated",
    "crop": "_cropped",
    "filter": "_filtered",
}


class PipelineConfig(BaseModel):
    steps: list[Step] = Field(default_factory=list)
    output: OutputStep = Field(default_factory=OutputStep)

    def filename_suffix(self, source_format: ImageFormat | None, target_format: ImageFormat) -> str:
        """Semantic suffix for the output name, one tag per distinct step kind."""
        tags: list[str] = []
        for step in self.steps:
            tag = STEP_SUFFIXES[step.kind]
            if tag not in tags:
                tags.append(tag)
        if tags:
            return "".join(tags)
        return "_converted" if source_format is not target_format else "_compressed"
