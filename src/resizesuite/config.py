"""Environment-based configuration for ResizeSuite."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from RESIZESUITE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RESIZESUITE_",
        case_sensitive=False,
    )

    # Input limits
    max_file_size: int = Field(default=52_428_800, ge=1)
    max_image_pixels: int = Field(default=50_000_000, ge=1)

    # Encoding policy (quality is expressed in 0.0-1.0)
    default_quality: float = Field(default=0.9, ge=0.1, le=1.0)
    jpeg_quality_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    webp_quality_floor: float = Field(default=0.7, ge=0.0, le=1.0)
    avif_quality_floor: float = Field(default=0.6, ge=0.0, le=1.0)

    # Filters
    oil_jitter: float = Field(default=20.0, ge=0.0, le=255.0)

    # Smart crop
    face_weight: float = Field(default=2.0, gt=0.0)
    object_weight: float = Field(default=1.0, gt=0.0)
    crop_padding: float = Field(default=0.2, ge=0.0, le=2.0)
    fallback_crop_scale: float = Field(default=0.8, gt=0.0, le=1.0)
    min_detection_score: float = Field(default=0.3, ge=0.0, le=1.0)

    # Batch
    max_concurrent: int = Field(default=1, ge=1, le=4)
    max_archive_size: int = Field(default=104_857_600, ge=1)

    # Subject detection
    # Off until models_repo (or models_dir) holds the UltraFace and SSD weights.
    detection_enabled: bool = False
    device: Literal["cpu", "cuda", "openvino"] = "cpu"
    face_detection_model: str = "ultraface_rfb_320"
    object_detection_model: str | None = "ssd_mobilenet_v1"
    models_repo: str = "resizesuite/detector-models"
    models_dir: str = "models"
    face_score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    object_score_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    nms_iou_threshold: float = Field(default=0.3, gt=0.0, le=1.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return engine settings."""
    return Settings()
