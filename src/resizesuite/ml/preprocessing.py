"""Detector input preparation and output post-processing."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from resizesuite.imaging.raster import RasterImage

ULTRAFACE_INPUT_SIZE: tuple[int, int] = (320, 240)
SSD_MAX_SIDE: int = 640

# TF object-detection COCO ids (1-based, with gaps marked "N/A").
COCO_LABELS: tuple[str, ...] = (
    "background", "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck",
    "boat", "traffic light", "fire hydrant", "N/A", "stop sign", "parking meter", "bench", "bird",
    "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "N/A",
    "backpack", "umbrella", "N/A", "N/A", "handbag", "tie", "suitcase", "frisbee", "skis",
    "snowboard", "sports ball", "kite", "baseball bat", "baseball glove", "skateboard",
    "surfboard", "tennis racket", "bottle", "N/A", "wine glass", "cup", "fork", "knife", "spoon",
    "bowl", "banana", "apple", "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza",
    "donut", "cake", "chair", "couch", "potted plant", "bed", "N/A", "dining table", "N/A",
    "N/A", "toilet", "N/A", "tv", "laptop", "mouse", "remote", "keyboard", "cell phone",
    "microwave", "oven", "toaster", "sink", "refrigerator", "N/A", "book", "clock", "vase",
    "scissors", "teddy bear", "hair drier", "toothbrush",
)  # fmt: skip


def _rgb(image: RasterImage) -> Image.Image:
    pil_image = image.to_pil()
    return pil_image.convert("RGB") if pil_image.mode != "RGB" else pil_image


def prepare_ultraface_input(image: RasterImage) -> NDArray[np.float32]:
    """Resize to 320x240 and normalize to roughly [-1, 1], NCHW float32."""
    resized = _rgb(image).resize(ULTRAFACE_INPUT_SIZE, resample=Image.Resampling.BILINEAR)
    arr = (np.asarray(resized, dtype=np.float32) - 127.0) / 128.0
    return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis, ...])


def prepare_ssd_input(image: RasterImage) -> NDArray[np.uint8]:
    """Downscale so the long side is at most 640px, NHWC uint8.

    SSD outputs normalized coordinates, so the downscale does not need to be
    undone afterwards.
    """
    pil_image = _rgb(image)
    longest = max(pil_image.size)
    if longest > SSD_MAX_SIDE:
        scale = SSD_MAX_SIDE / longest
        size = (max(1, round(pil_image.width * scale)), max(1, round(pil_image.height * scale)))
        pil_image = pil_image.resize(size, resample=Image.Resampling.BOX)
    return np.ascontiguousarray(np.asarray(pil_image, dtype=np.uint8)[np.newaxis, ...])


def non_max_suppression(
    boxes: NDArray[np.float32],
    scores: NDArray[np.float32],
    iou_threshold: float,
) -> list[int]:
    """Greedy NMS over corner-form boxes.

    Returns:
        Indices of the kept boxes, highest score first.
    """
    if len(boxes) == 0:
        return []
    x1, y1, x2, y2 = (boxes[:, i].astype(np.float64) for i in range(4))
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)
    order = np.argsort(-scores, kind="stable")

    keep: list[int] = []
    while order.size > 0:
        best = int(order[0])
        keep.append(best)
        rest = order[1:]
        inter_w = np.maximum(0.0, np.minimum(x2[best], x2[rest]) - np.maximum(x1[best], x1[rest]))
        inter_h = np.maximum(0.0, np.minimum(y2[best], y2[rest]) - np.maximum(y1[best], y1[rest]))
        inter = inter_w * inter_h
        union = areas[best] + areas[rest] - inter
        iou = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0)
        order = rest[iou <= iou_threshold]
    return keep
