"""
Image conditioning for the handwriting digit model.

Turns a drawing canvas (black strokes on white) into the normalized 28x28
MNIST-style tensor, plus a small preview image for display.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from .constants import DEFAULT_IMAGE_CONFIG, ImageConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive pixel bounds of the ink on a canvas."""

    x0: int
    y0: int
    x1: int
    y1: int

    @property
    def width(self) -> int:
        return self.x1 - self.x0 + 1

    @property
    def height(self) -> int:
        return self.y1 - self.y0 + 1


@dataclass
class CanvasTensor:
    """Model input for one canvas. ``has_ink`` is False for a blank canvas."""

    tensor: np.ndarray
    preview: Image.Image
    has_ink: bool
    bbox: Optional[BoundingBox] = None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def red_channel(canvas: np.ndarray) -> np.ndarray:
    """Red channel of an RGB(A) canvas as uint8; grayscale canvases pass through."""
    if canvas is None:
        raise ValueError("Canvas is None")
    canvas = np.asarray(canvas)
    if canvas.ndim == 3:
        canvas = canvas[:, :, 0]
    elif canvas.ndim != 2:
        raise ValueError(f"Expected an HxW or HxWxC canvas, got shape {canvas.shape}")
    if canvas.shape[0] == 0 or canvas.shape[1] == 0:
        raise ValueError("Canvas has invalid dimensions")
    if canvas.dtype != np.uint8:
        canvas = np.clip(canvas, 0, 255).astype(np.uint8)
    return canvas


def ink_map(red: np.ndarray) -> np.ndarray:
    return 1.0 - red.astype(np.float32) / 255.0


def find_ink_bbox(canvas: np.ndarray, threshold: float = DEFAULT_IMAGE_CONFIG.ink_threshold) -> Optional[BoundingBox]:
    """Smallest box enclosing every pixel whose ink exceeds ``threshold``."""
    ys, xs = np.where(ink_map(red_channel(canvas)) > threshold)
    if ys.size == 0:
        return None
    return BoundingBox(int(xs.min()), int(ys.min()), int(xs.max()), int(ys.max()))


def expand_bbox(bbox: BoundingBox, margin_fraction: float, width: int, height: int) -> BoundingBox:
    """Grow the box by a fraction of its larger side, clipped to the canvas."""
    margin = _round_half_up(max(bbox.width, bbox.height) * margin_fraction)
    return BoundingBox(
        int(np.clip(bbox.x0 - margin, 0, width - 1)),
        int(np.clip(bbox.y0 - margin, 0, height - 1)),
        int(np.clip(bbox.x1 + margin, 0, width - 1)),
        int(np.clip(bbox.y1 + margin, 0, height - 1)),
    )


def fit_to_square(crop: np.ndarray, config: ImageConfig = DEFAULT_IMAGE_CONFIG) -> np.ndarray:
    """Scale the crop so its larger side is ``target_ink_size`` and center it on white."""
    h, w = crop.shape[:2]
    scale = config.target_ink_size / float(max(h, w))
    new_w = max(1, _round_half_up(w * scale))
    new_h = max(1, _round_half_up(h * scale))
    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_CUBIC
    resized = cv2.resize(crop, (new_w, new_h), interpolation=interpolation)

    size = config.size
    canvas = np.full((size, size), 255, dtype=np.uint8)
    y0 = (size - new_h) // 2
    x0 = (size - new_w) // 2
    canvas[y0:y0 + new_h, x0:x0 + new_w] = resized
    return canvas


def normalize_ink(gray: np.ndarray, config: ImageConfig = DEFAULT_IMAGE_CONFIG) -> np.ndarray:
    """Convert white-background pixels to standardized ink values, flattened."""
    ink = ink_map(gray)
    return ((ink - config.mean) / config.std).astype(np.float32).ravel()


def preprocess_canvas(canvas: np.ndarray, config: ImageConfig = DEFAULT_IMAGE_CONFIG) -> CanvasTensor:
    """
    Full canvas conditioning: ink bbox, margin crop, rescale, recenter, normalize.

    A canvas without ink yields an all-zero tensor with ``has_ink=False``;
    callers should skip scoring in that case.
    """
    red = red_channel(canvas)
    height, width = red.shape
    bbox = find_ink_bbox(red, config.ink_threshold)
    if bbox is None:
        logger.debug("No ink found on %dx%d canvas", width, height)
        return CanvasTensor(
            tensor=np.zeros(config.size * config.size, dtype=np.float32),
            preview=Image.new("L", (config.size, config.size), 0),
            has_ink=False,
        )

    crop_box = expand_bbox(bbox, config.margin_fraction, width, height)
    crop = red[crop_box.y0:crop_box.y1 + 1, crop_box.x0:crop_box.x1 + 1]
    square = fit_to_square(crop, config)
    return CanvasTensor(
        tensor=normalize_ink(square, config),
        preview=Image.fromarray(square),
        has_ink=True,
        bbox=bbox,
    )


def normalize_mnist_pixels(pixels: np.ndarray, config: ImageConfig = DEFAULT_IMAGE_CONFIG) -> np.ndarray:
    """Standardize dataset pixels that are already white-on-black 28x28 bytes."""
    values = np.asarray(pixels, dtype=np.float32).ravel()
    expected = config.size * config.size
    if values.size != expected:
        raise ValueError(f"Expected {expected} pixels, got {values.size}")
    return ((values / 255.0 - config.mean) / config.std).astype(np.float32)


def load_canvas(path: str) -> np.ndarray:
    """Read an image file as an RGB array, flattening transparency onto white."""
    with Image.open(path) as img:
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            background.alpha_composite(rgba)
            return np.array(background.convert("RGB"))
        return np.array(img.convert("RGB"))
