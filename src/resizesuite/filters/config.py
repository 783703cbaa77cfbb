"""Filter parameters and the built-in preset catalogue."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

# Application order of the parametric adjustments.
PARAMETER_ORDER: tuple[str, ...] = (
    "sepia",
    "brightness",
    "contrast",
    "saturation",
    "hue",
    "blur",
    "sharpen",
    "vignette",
)


class FilterCategory(StrEnum):
    VINTAGE = "vintage"
    ARTISTIC = "artistic"
    INSTAGRAM = "instagram"
    CUSTOM = "custom"


class FilterConfig(BaseModel):
    """Parametric adjustment values. ``None`` or 0 means inactive."""

    sepia: float | None = Field(default=None, ge=0, le=100, description="Sepia tone amount (%)")
    brightness: float | None = Field(default=None, ge=-100, le=100, description="Brightness delta (%)")
    contrast: float | None = Field(default=None, ge=-100, le=100, description="Contrast delta (%)")
    saturation: float | None = Field(default=None, ge=-100, le=100, description="Saturation delta (%)")
    hue: float | None = Field(default=None, ge=-180, le=180, description="Hue rotation (degrees)")
    blur: float | None = Field(default=None, ge=0, le=20, description="Gaussian blur sigma (px)")
    sharpen: float | None = Field(default=None, ge=0, le=100, description="Sharpen amount (%)")
    vignette: float | None = Field(default=None, ge=0, le=100, description="Vignette strength (%)")

    def active(self) -> dict[str, float]:
        """Non-zero parameters in application order."""
        values = {name: getattr(self, name) for name in PARAMETER_ORDER}
        return {name: float(value) for name, value in values.items() if value}

    def scaled(self, intensity: float) -> dict[str, float]:
        """Active parameters multiplied by ``intensity / 100``."""
        factor = intensity / 100
        scaled = {name: value * factor for name, value in self.active().items()}
        return {name: value for name, value in scaled.items() if value}

    @property
    def is_identity(self) -> bool:
        return not self.active()


class FilterPreset(BaseModel):
    id: str
    name: str
    category: FilterCategory
    config: FilterConfig = Field(default_factory=FilterConfig)


FILTER_PRESETS: tuple[FilterPreset, ...] = (
    # Vintage
    FilterPreset(id="sepia", name="Sepia", category=FilterCategory.VINTAGE, config=FilterConfig(sepia=100)),
    FilterPreset(
        id="vintage",
        name="Vintage",
        category=FilterCategory.VINTAGE,
        config=FilterConfig(sepia=80, brightness=-10, contrast=20, saturation=-30),
    ),
    FilterPreset(
        id="aged",
        name="Aged",
        category=FilterCategory.VINTAGE,
        config=FilterConfig(sepia=60, brightness=-15, contrast=15, saturation=-20, vignette=30),
    ),
    # Artistic: rendered by the algorithmic filters, config kept for previews.
    FilterPreset(
        id="oil-painting",
        name="Oil Painting",
        category=FilterCategory.ARTISTIC,
        config=FilterConfig(saturation=30, sharpen=30, blur=0.1),
    ),
    FilterPreset(
        id="watercolor",
        name="Watercolor",
        category=FilterCategory.ARTISTIC,
        config=FilterConfig(saturation=40, blur=0.2, brightness=10),
    ),
    FilterPreset(
        id="sketch",
        name="Sketch",
        category=FilterCategory.ARTISTIC,
        config=FilterConfig(brightness=20, contrast=50, saturation=-100),
    ),
    # Instagram-style
    FilterPreset(
        id="nashville",
        name="Nashville",
        category=FilterCategory.INSTAGRAM,
        config=FilterConfig(brightness=10, contrast=20, saturation=-20, hue=10),
    ),
    FilterPreset(
        id="valencia",
        name="Valencia",
        category=FilterCategory.INSTAGRAM,
        config=FilterConfig(brightness=15, contrast=10, saturation=20, hue=5),
    ),
    FilterPreset(
        id="xpro2",
        name="X-Pro II",
        category=FilterCategory.INSTAGRAM,
        config=FilterConfig(brightness=5, contrast=30, saturation=-10, hue=-10),
    ),
    FilterPreset(
        id="willow",
        name="Willow",
        category=FilterCategory.INSTAGRAM,
        config=FilterConfig(brightness=-10, contrast=15, saturation=-30, hue=-20),
    ),
    FilterPreset(
        id="1977",
        name="1977",
        category=FilterCategory.INSTAGRAM,
        config=FilterConfig(brightness=20, contrast=10, saturation=30, hue=15),
    ),
    FilterPreset(
        id="amaro",
        name="Amaro",
        category=FilterCategory.INSTAGRAM,
        config=FilterConfig(brightness=10, contrast=20, saturation=10, hue=5),
    ),
)

_PRESETS_BY_ID: dict[str, FilterPreset] = {preset.id: preset for preset in FILTER_PRESETS}


def get_preset(preset_id: str) -> FilterPreset:
    try:
        return _PRESETS_BY_ID[preset_id]
    except KeyError:
        raise KeyError(f"Unknown filter preset: {preset_id}") from None
