"""
Pixel buffer type and the stateless transforms applied before matching:
resampling, aspect-preserving target sizes, luma reduction and cropping.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Tuple, Union

import cv2
import numpy as np

from .errors import InvalidDimensionError, SelectionOutOfBoundsError

# ---------- configuration ----------
CHANNELS = 4
LUMA_WEIGHTS = (0.299, 0.587, 0.114)
RESIZE_INTERPOLATION = cv2.INTER_LINEAR


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ---------- data model ----------
@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """Row-major RGBA image held as a ``(height, width, 4)`` uint8 array.

    ``data`` may be given as any buffer of ``width * height * 4`` bytes
    (``bytes``, a flat array, or an already shaped array); it is reshaped on
    construction. A length that disagrees with the dimensions raises
    :class:`InvalidDimensionError`.
    """

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise InvalidDimensionError(
                f"Buffer dimensions must be non-negative, got {self.width}x{self.height}"
            )
        raw = self.data
        if isinstance(raw, (bytes, bytearray, memoryview)):
            arr = np.frombuffer(raw, dtype=np.uint8)
        else:
            arr = np.asarray(raw, dtype=np.uint8)
        expected = self.width * self.height * CHANNELS
        if arr.size != expected:
            raise InvalidDimensionError(
                f"Buffer of {self.width}x{self.height} needs {expected} samples, got {arr.size}"
            )
        object.__setattr__(
            self, "data", arr.reshape(self.height, self.width, CHANNELS)
        )

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "PixelBuffer":
        """Wrap an ``(h, w)``, ``(h, w, 3)`` or ``(h, w, 4)`` array (RGB order)."""
        arr = np.asarray(pixels)
        if arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)
        if arr.ndim == 2:
            arr = np.dstack([arr, arr, arr, np.full_like(arr, 255)])
        elif arr.ndim == 3 and arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=2)
        elif arr.ndim != 3 or arr.shape[2] != CHANNELS:
            raise InvalidDimensionError(f"Unsupported pixel array shape {arr.shape}")
        h, w = arr.shape[:2]
        return cls(width=w, height=h, data=np.ascontiguousarray(arr))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def intensity(self) -> np.ndarray:
        """First channel as float64, the scalar the kernel correlates."""
        return self.data[:, :, 0].astype(np.float64)

    def to_bytes(self) -> bytes:
        return self.data.tobytes()

    def read_only(self) -> "PixelBuffer":
        arr = self.data.copy()
        arr.flags.writeable = False
        return PixelBuffer(self.width, self.height, arr)


@dataclass(frozen=True)
class Selection:
    """Rectangle in pixels; may be fractional until rounded by :meth:`scaled`."""

    x: float
    y: float
    width: float
    height: float

    def fits(self, width: int, height: int) -> bool:
        return (
            self.width >= 1
            and self.height >= 1
            and self.x >= 0
            and self.y >= 0
            and self.x + self.width <= width
            and self.y + self.height <= height
        )

    def scaled(self, scale_x: float, scale_y: float) -> "Selection":
        return Selection(
            x=round_half_up(self.x * scale_x),
            y=round_half_up(self.y * scale_y),
            width=round_half_up(self.width * scale_x),
            height=round_half_up(self.height * scale_y),
        )

    def rounded(self) -> "Selection":
        return self.scaled(1.0, 1.0)


SelectionLike = Union[Selection, Mapping[str, float], Tuple[float, float, float, float]]


def as_selection(selection: SelectionLike) -> Selection:
    if isinstance(selection, Selection):
        return selection
    if isinstance(selection, Mapping):
        return Selection(
            float(selection["x"]),
            float(selection["y"]),
            float(selection["width"]),
            float(selection["height"]),
        )
    x, y, w, h = selection
    return Selection(float(x), float(y), float(w), float(h))


# ---------- transforms ----------
def resize(
    buffer: PixelBuffer,
    new_width: int,
    new_height: int,
    interpolation: int = RESIZE_INTERPOLATION,
) -> PixelBuffer:
    if new_width <= 0 or new_height <= 0:
        raise InvalidDimensionError(
            f"Resize target must be at least 1x1, got {new_width}x{new_height}"
        )
    if buffer.width <= 0 or buffer.height <= 0:
        raise InvalidDimensionError("Cannot resize an empty buffer")
    if (new_width, new_height) == (buffer.width, buffer.height):
        return PixelBuffer(buffer.width, buffer.height, buffer.data.copy())
    out = cv2.resize(
        buffer.data, (int(new_width), int(new_height)), interpolation=interpolation
    )
    return PixelBuffer(int(new_width), int(new_height), out)


def optimal_size(width: int, height: int, target_size: int) -> Tuple[int, int]:
    """
    Aspect-preserving size whose larger side moves toward ``target_size``.

    Never upsamples: each side is capped at its original length.
    """
    if width <= 0 or height <= 0:
        raise InvalidDimensionError(f"Invalid source size {width}x{height}")
    aspect = width / height
    if width >= height:
        w = min(target_size, width)
        h = min(target_size / aspect, height)
    else:
        w = min(target_size * aspect, width)
        h = min(target_size, height)
    return round_half_up(w), round_half_up(h)


def to_grayscale(buffer: PixelBuffer) -> PixelBuffer:
    rgb = buffer.data[:, :, :3].astype(np.float64)
    wr, wg, wb = LUMA_WEIGHTS
    gray = np.floor(wr * rgb[:, :, 0] + wg * rgb[:, :, 1] + wb * rgb[:, :, 2] + 0.5)
    gray = np.clip(gray, 0, 255).astype(np.uint8)
    out = np.empty_like(buffer.data)
    out[:, :, 0] = gray
    out[:, :, 1] = gray
    out[:, :, 2] = gray
    out[:, :, 3] = buffer.data[:, :, 3]
    return PixelBuffer(buffer.width, buffer.height, out)


def extract_template(buffer: PixelBuffer, selection: SelectionLike) -> PixelBuffer:
    sel = as_selection(selection).rounded()
    if not sel.fits(buffer.width, buffer.height):
        raise SelectionOutOfBoundsError(
            f"Selection {sel} falls outside the {buffer.width}x{buffer.height} buffer"
        )
    crop = buffer.data[sel.y : sel.y + sel.height, sel.x : sel.x + sel.width]
    return PixelBuffer(sel.width, sel.height, crop).read_only()
