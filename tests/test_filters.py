"""Tests for filter parameters, parametric adjustments, artistic effects and the engine."""

from __future__ import annotations

import numpy as np
import pytest

from resizesuite.config import Settings
from resizesuite.filters.adjustments import (
    apply_adjustments,
    blur,
    brightness,
    contrast,
    hue,
    saturation,
    sepia,
    sharpen,
    vignette,
)
from resizesuite.filters.artistic import oil_painting, sketch, watercolor
from resizesuite.filters.config import (
    FILTER_PRESETS,
    PARAMETER_ORDER,
    FilterCategory,
    FilterConfig,
    get_preset,
)
from resizesuite.filters.engine import (
    AdjustmentStage,
    ArtisticStage,
    FilterEngine,
    FilterPipeline,
)
from resizesuite.imaging.raster import RasterImage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {"oil_jitter": 20.0}
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _noise(width: int = 24, height: int = 16, channels: int = 3, seed: int = 3) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)


def _uniform(value: tuple[int, ...], width: int = 12, height: int = 10) -> np.ndarray:
    pixels = np.empty((height, width, len(value)), dtype=np.uint8)
    pixels[...] = value
    return pixels


def _as_float(pixels: np.ndarray) -> np.ndarray:
    return pixels.astype(np.float32)


# ---------------------------------------------------------------------------
# FilterConfig and presets
# ---------------------------------------------------------------------------


class TestFilterConfig:
    def test_active_follows_parameter_order(self) -> None:
        config = FilterConfig(vignette=10, sepia=50, hue=0, contrast=-20)
        assert list(config.active()) == ["sepia", "contrast", "vignette"]

    def test_scaled_by_intensity(self) -> None:
        config = FilterConfig(sepia=80, brightness=-10)
        assert config.scaled(50) == {"sepia": 40.0, "brightness": -5.0}

    def test_identity(self) -> None:
        assert FilterConfig().is_identity
        assert FilterConfig(blur=0).is_identity
        assert not FilterConfig(blur=1).is_identity

    def test_out_of_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            FilterConfig(hue=270)

    def test_parameter_order_covers_all_fields(self) -> None:
        assert set(PARAMETER_ORDER) == set(FilterConfig.model_fields)


class TestPresets:
    def test_catalogue(self) -> None:
        assert len(FILTER_PRESETS) == 12
        assert len({p.id for p in FILTER_PRESETS}) == 12

    def test_artistic_presets(self) -> None:
        artistic = {p.id for p in FILTER_PRESETS if p.category is FilterCategory.ARTISTIC}
        assert artistic == {"oil-painting", "watercolor", "sketch"}

    def test_get_preset(self) -> None:
        assert get_preset("sepia").config.sepia == 100

    def test_unknown_preset(self) -> None:
        with pytest.raises(KeyError, match="Unknown filter preset"):
            get_preset("lomo")


# ---------------------------------------------------------------------------
# Parametric adjustments
# ---------------------------------------------------------------------------


class TestAdjustments:
    def test_brightness_doubles(self) -> None:
        out = brightness(_as_float(_uniform((50, 100, 200))), 100)
        assert tuple(out[0, 0]) == (100.0, 200.0, 255.0)

    def test_contrast_minus_100_is_flat_gray(self) -> None:
        out = contrast(_as_float(_noise()), -100)
        assert np.allclose(out, 127.5)

    def test_desaturate_gives_equal_channels(self) -> None:
        out = saturation(_as_float(_noise()), -100)
        np.testing.assert_allclose(out[..., 0], out[..., 1], atol=1e-3)
        np.testing.assert_allclose(out[..., 1], out[..., 2], atol=1e-3)

    def test_hue_zero_is_identity(self) -> None:
        pixels = _as_float(_noise())
        assert np.abs(hue(pixels, 0) - pixels).max() < 0.5

    def test_sepia_warms_white(self) -> None:
        out = sepia(_as_float(_uniform((255, 255, 255))), 100)
        r, g, b = out[0, 0]
        assert r == 255.0
        assert b < g <= r

    def test_blur_keeps_uniform_image(self) -> None:
        out = blur(_as_float(_uniform((40, 80, 120))), 2.5)
        assert np.allclose(out, (40, 80, 120), atol=1e-3)

    def test_blur_smooths_noise(self) -> None:
        pixels = _as_float(_noise(32, 32))
        assert blur(pixels, 2).std() < pixels.std()

    def test_blur_zero_sigma_is_identity(self) -> None:
        pixels = _as_float(_noise())
        assert np.array_equal(blur(pixels, 0), pixels)

    def test_blur_spreads_a_point_symmetrically(self) -> None:
        pixels = np.zeros((21, 21, 4), dtype=np.float32)
        pixels[10, 10] = 255
        out = blur(pixels, 2)
        assert out.shape == pixels.shape
        assert out[10, 10, 0] < 255
        assert out[10, 12, 0] > 0
        assert out[10, 12, 0] == out[10, 8, 0]
        assert abs(out[10, 12, 0] - out[12, 10, 0]) <= 1
        assert out[10, 12, 3] == out[10, 12, 0]

    def test_sharpen_keeps_uniform_image(self) -> None:
        out = sharpen(_as_float(_uniform((40, 80, 120))), 100)
        assert np.allclose(out, (40, 80, 120), atol=1e-3)

    def test_vignette_darkens_corners(self) -> None:
        out = vignette(_as_float(_uniform((200, 200, 200), 21, 21)), 80)
        assert out[0, 0, 0] < out[10, 10, 0]

    def test_alpha_untouched_by_color_adjustments(self) -> None:
        pixels = _noise(channels=4)
        out = apply_adjustments(pixels, {"sepia": 60.0, "hue": 45.0, "brightness": 20.0})
        np.testing.assert_array_equal(out[..., 3], pixels[..., 3])

    def test_empty_params_copy(self) -> None:
        pixels = _noise()
        out = apply_adjustments(pixels, {})
        np.testing.assert_array_equal(out, pixels)
        assert out is not pixels


# ---------------------------------------------------------------------------
# Artistic filters
# ---------------------------------------------------------------------------


class TestOilPainting:
    def test_intensity_zero_is_identity(self) -> None:
        pixels = _noise(channels=4)
        out = oil_painting(pixels, 0, np.random.default_rng(0), jitter=20)
        np.testing.assert_array_equal(out, pixels)

    def test_seeded_output_is_deterministic(self) -> None:
        pixels = _noise(40, 30)
        first = oil_painting(pixels, 70, np.random.default_rng(42), jitter=20)
        second = oil_painting(pixels, 70, np.random.default_rng(42), jitter=20)
        np.testing.assert_array_equal(first, second)

    def test_different_seeds_differ(self) -> None:
        pixels = _noise(40, 30)
        first = oil_painting(pixels, 100, np.random.default_rng(1), jitter=20)
        second = oil_painting(pixels, 100, np.random.default_rng(2), jitter=20)
        assert not np.array_equal(first, second)

    def test_tiles_are_flat_without_jitter(self) -> None:
        out = oil_painting(_noise(8, 8), 100, np.random.default_rng(0), jitter=0)
        # Intensity 100 gives 4x4 tiles.
        for ty in range(2):
            for tx in range(2):
                tile = out[ty * 4 : ty * 4 + 4, tx * 4 : tx * 4 + 4]
                assert np.all(tile == tile[0, 0])

    def test_tie_goes_to_smallest_color(self) -> None:
        pixels = np.array([[[0, 0, 0], [255, 255, 255]], [[255, 255, 255], [0, 0, 0]]], dtype=np.uint8)
        out = oil_painting(pixels, 50, np.random.default_rng(0), jitter=0)
        assert np.all(out == 0)

    def test_alpha_preserved(self) -> None:
        pixels = _noise(channels=4)
        out = oil_painting(pixels, 60, np.random.default_rng(0))
        np.testing.assert_array_equal(out[..., 3], pixels[..., 3])


class TestWatercolor:
    def test_shape_and_dtype(self) -> None:
        out = watercolor(_noise(channels=4), 80)
        assert out.shape == (16, 24, 4)
        assert out.dtype == np.uint8

    def test_gray_stays_gray(self) -> None:
        out = watercolor(_uniform((90, 90, 90)), 100)
        assert np.all(np.abs(out.astype(int) - 90) <= 1)

    def test_deterministic(self) -> None:
        pixels = _noise()
        np.testing.assert_array_equal(watercolor(pixels, 55), watercolor(pixels, 55))

    def test_smooths_noise(self) -> None:
        pixels = _noise(32, 32)
        gray = pixels.mean(axis=2)
        out_gray = watercolor(pixels, 30).astype(np.float64).mean(axis=2)
        assert out_gray.std() < gray.std()


class TestSketch:
    @pytest.mark.parametrize("intensity", [0, 35, 100])
    def test_channels_are_equal(self, intensity: float) -> None:
        out = sketch(_noise(channels=4), intensity)
        np.testing.assert_array_equal(out[..., 0], out[..., 1])
        np.testing.assert_array_equal(out[..., 1], out[..., 2])

    def test_flat_interior_is_white(self) -> None:
        out = sketch(_uniform((100, 100, 100)), 100)
        assert np.all(out[1:-1, 1:-1, :3] == 255)
        assert np.all(out[0, :, 0] == 100)

    def test_edges_become_dark(self) -> None:
        pixels = np.zeros((10, 10, 3), dtype=np.uint8)
        pixels[:, 5:] = 255
        out = sketch(pixels, 100)
        assert out[5, 5, 0] == 0
        assert out[5, 2, 0] == 255

    def test_alpha_preserved(self) -> None:
        pixels = _noise(channels=4)
        np.testing.assert_array_equal(sketch(pixels, 50)[..., 3], pixels[..., 3])


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestFilterEngine:
    def test_preset_then_custom(self) -> None:
        pipeline = FilterEngine(_make_settings()).build("vintage", FilterConfig(brightness=10))
        assert [stage.name for stage in pipeline.stages] == ["vintage", "custom"]

    def test_artistic_preset_dispatches_to_algorithm(self) -> None:
        pipeline = FilterEngine(_make_settings()).build("sketch")
        (stage,) = pipeline.stages
        assert isinstance(stage, ArtisticStage)
        assert stage.effect == "sketch"

    def test_identity_custom_is_skipped(self) -> None:
        pipeline = FilterEngine(_make_settings()).build(None, FilterConfig())
        assert pipeline.stages == ()

    def test_intensity_zero_is_identity_for_parametric(self) -> None:
        image = RasterImage(pixels=_noise())
        out = FilterEngine(_make_settings()).apply(image, "nashville", FilterConfig(sepia=40), intensity=0)
        np.testing.assert_array_equal(out.pixels, image.pixels)

    def test_order_matters(self) -> None:
        image = RasterImage(pixels=_noise())
        sepia_stage = AdjustmentStage(config=FilterConfig(sepia=100))
        bright_stage = AdjustmentStage(config=FilterConfig(brightness=60))
        forward = FilterPipeline([sepia_stage, bright_stage]).apply(image)
        backward = FilterPipeline([bright_stage, sepia_stage]).apply(image)
        assert not np.array_equal(forward.pixels, backward.pixels)

    def test_seeded_oil_painting_is_reproducible(self) -> None:
        image = RasterImage(pixels=_noise(30, 30))
        engine = FilterEngine(_make_settings())
        first = engine.apply(image, "oil-painting", rng=np.random.default_rng(5))
        second = engine.apply(image, "oil-painting", rng=np.random.default_rng(5))
        np.testing.assert_array_equal(first.pixels, second.pixels)

    def test_intensity_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="Intensity"):
            FilterEngine(_make_settings()).apply(RasterImage(pixels=_noise()), "sepia", intensity=150)

    def test_unknown_preset(self) -> None:
        with pytest.raises(KeyError):
            FilterEngine(_make_settings()).build("lomo")

    def test_source_not_mutated(self) -> None:
        image = RasterImage(pixels=_noise())
        before = image.pixels.copy()
        FilterEngine(_make_settings()).apply(image, "aged", FilterConfig(blur=2))
        np.testing.assert_array_equal(image.pixels, before)
