"""Image loading and saving at the edge of the pipeline."""

from __future__ import annotations

import cv2
import numpy as np
from PIL import Image

from .pixels import PixelBuffer


def load_image(path: str) -> PixelBuffer:
    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise RuntimeError(f"Failed to load image: {path}")
    if img.dtype != np.uint8:
        img = cv2.convertScaleAbs(img, alpha=255.0 / max(1, int(img.max())))
    if img.ndim == 2:
        rgba = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    elif img.shape[2] == 4:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    return PixelBuffer.from_array(rgba)


def from_pil(image: Image.Image) -> PixelBuffer:
    return PixelBuffer.from_array(np.array(image.convert("RGBA")))


def to_rgb(buffer: PixelBuffer) -> np.ndarray:
    return np.ascontiguousarray(buffer.data[:, :, :3])


def save_image(path: str, image_rgb: np.ndarray) -> None:
    if image_rgb.ndim == 3 and image_rgb.shape[2] == 4:
        bgr = cv2.cvtColor(image_rgb, cv2.COLOR_RGBA2BGR)
    elif image_rgb.ndim == 3:
        bgr = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)
    else:
        bgr = image_rgb
    if not cv2.imwrite(path, bgr):
        raise RuntimeError(f"Failed to write image: {path}")
