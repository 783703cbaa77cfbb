"""Filter engine: an ordered list of stages applied to one image.

The default order is preset first, custom adjustments second. Reordering
changes the output, so callers that need a different order build their own
stage list instead of relying on the default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from resizesuite.filters.adjustments import apply_adjustments
from resizesuite.filters.artistic import oil_painting, sketch, watercolor
from resizesuite.filters.config import FilterCategory, FilterConfig, FilterPreset, get_preset

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from resizesuite.config import Settings
    from resizesuite.imaging.raster import RasterImage

logger = logging.getLogger(__name__)

ARTISTIC_EFFECTS: frozenset[str] = frozenset({"oil-painting", "watercolor", "sketch"})


class FilterStage(Protocol):
    """One transform step in a filter pipeline."""

    @property
    def name(self) -> str:
        """Short label for logging."""
        ...

    def apply(self, pixels: NDArray[np.uint8], intensity: float, rng: np.random.Generator) -> NDArray[np.uint8]:
        """Return filtered pixels; must not mutate the input."""
        ...


@dataclass(frozen=True)
class AdjustmentStage:
    """Parametric color adjustments scaled by intensity."""

    config: FilterConfig
    label: str = "custom"

    @property
    def name(self) -> str:
        return self.label

    def apply(self, pixels: NDArray[np.uint8], intensity: float, rng: np.random.Generator) -> NDArray[np.uint8]:
        return apply_adjustments(pixels, self.config.scaled(intensity))


@dataclass(frozen=True)
class ArtisticStage:
    """One of the algorithmic effects (oil-painting, watercolor, sketch)."""

    effect: str
    oil_jitter: float = 20.0

    def __post_init__(self) -> None:
        if self.effect not in ARTISTIC_EFFECTS:
            raise ValueError(f"Unknown artistic effect: {self.effect}")

    @property
    def name(self) -> str:
        return self.effect

    def apply(self, pixels: NDArray[np.uint8], intensity: float, rng: np.random.Generator) -> NDArray[np.uint8]:
        if self.effect == "oil-painting":
            return oil_painting(pixels, intensity, rng, jitter=self.oil_jitter)
        if self.effect == "watercolor":
            return watercolor(pixels, intensity)
        return sketch(pixels, intensity)


def preset_stage(preset: FilterPreset, oil_jitter: float = 20.0) -> FilterStage:
    """Artistic presets run their algorithm, every other preset its config."""
    if preset.category is FilterCategory.ARTISTIC and preset.id in ARTISTIC_EFFECTS:
        return ArtisticStage(effect=preset.id, oil_jitter=oil_jitter)
    return AdjustmentStage(config=preset.config, label=preset.id)


class FilterPipeline:
    """Applies stages in list order with a shared intensity."""

    def __init__(self, stages: Sequence[FilterStage]) -> None:
        self._stages = tuple(stages)

    @property
    def stages(self) -> tuple[FilterStage, ...]:
        return self._stages

    def apply(
        self,
        image: RasterImage,
        intensity: float = 100.0,
        rng: np.random.Generator | None = None,
    ) -> RasterImage:
        if not 0 <= intensity <= 100:
            raise ValueError(f"Intensity must be between 0 and 100, got {intensity}")
        generator = rng if rng is not None else np.random.default_rng()
        pixels = image.pixels
        for stage in self._stages:
            logger.debug("Applying filter stage %s at intensity %s", stage.name, intensity)
            pixels = stage.apply(pixels, intensity, generator)
        return image.with_pixels(pixels)


class FilterEngine:
    """Builds the preset-then-custom pipeline from settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def build(self, preset: FilterPreset | str | None = None, custom: FilterConfig | None = None) -> FilterPipeline:
        stages: list[FilterStage] = []
        if preset is not None:
            resolved = get_preset(preset) if isinstance(preset, str) else preset
            stages.append(preset_stage(resolved, oil_jitter=self._settings.oil_jitter))
        if custom is not None and not custom.is_identity:
            stages.append(AdjustmentStage(config=custom))
        return FilterPipeline(stages)

    def apply(
        self,
        image: RasterImage,
        preset: FilterPreset | str | None = None,
        custom: FilterConfig | None = None,
        intensity: float = 100.0,
        rng: np.random.Generator | None = None,
    ) -> RasterImage:
        return self.build(preset, custom).apply(image, intensity=intensity, rng=rng)
