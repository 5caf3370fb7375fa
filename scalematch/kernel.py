"""
Similarity kernel and exhaustive window search.

The score is the raw cosine similarity of grayscale intensities,
``sum(a*b) / sqrt(sum(a*a) * sum(b*b))``. It is not mean-subtracted, so it
favours bright regions and moves with overall brightness as well as with
pattern shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import cv2
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .errors import InvalidDimensionError
from .pixels import PixelBuffer

# ---------- configuration ----------
# Surface positions this close to the peak are rescored exactly; the
# correlation pass carries float noise far below this.
NEAR_TIE_TOLERANCE = 1e-7
RESCORE_CHUNK = 256

Samples = Union[PixelBuffer, np.ndarray]


@dataclass(frozen=True)
class WindowMatch:
    x: int
    y: int
    score: float


def _samples(values: Samples) -> np.ndarray:
    if isinstance(values, PixelBuffer):
        return values.intensity()
    arr = np.asarray(values)
    if arr.ndim == 3:
        arr = arr[:, :, 0]
    return arr.astype(np.float64)


def score(window: Samples, template: Samples) -> float:
    """
    Cosine similarity between two equal-size sample grids.

    Only the first channel is read. Returns 0.0 for empty inputs and for
    fully flat (all-zero) inputs, where the ratio is undefined.
    """
    a = _samples(window)
    b = _samples(template)
    if a.shape != b.shape:
        raise InvalidDimensionError(
            f"Window {a.shape} and template {b.shape} differ in size"
        )
    if a.size == 0:
        return 0.0
    s1 = float(np.sum(a * b))
    s2 = float(np.sum(a * a))
    s3 = float(np.sum(b * b))
    if s2 == 0 or s3 == 0:
        return 0.0
    return float(s1 / np.sqrt(s2 * s3))


def _check_fit(target: np.ndarray, template: np.ndarray) -> None:
    th, tw = template.shape
    h, w = target.shape
    if th < 1 or tw < 1 or th > h or tw > w:
        raise InvalidDimensionError(
            f"Template {tw}x{th} does not fit inside target {w}x{h}"
        )


def score_surface(target: Samples, template: Samples) -> np.ndarray:
    """
    Score of every valid top-left position, shape ``(H - h + 1, W - w + 1)``.

    ``s1`` comes from a float64 correlation, ``s2`` from a summed-area table of
    squared intensities, which keeps it exact for 8-bit inputs.
    """
    t = _samples(target)
    k = _samples(template)
    _check_fit(t, k)
    th, tw = k.shape
    rows = t.shape[0] - th + 1
    cols = t.shape[1] - tw + 1

    s3 = float(np.sum(k * k))
    if s3 == 0:
        return np.zeros((rows, cols), dtype=np.float64)

    s1 = cv2.filter2D(
        t, cv2.CV_64F, k, anchor=(0, 0), borderType=cv2.BORDER_CONSTANT
    )[:rows, :cols]

    integral = np.zeros((t.shape[0] + 1, t.shape[1] + 1), dtype=np.float64)
    integral[1:, 1:] = np.cumsum(np.cumsum(t * t, axis=0), axis=1)
    s2 = (
        integral[th:, tw:]
        - integral[:rows, tw:]
        - integral[th:, :cols]
        + integral[:rows, :cols]
    )

    flat = s2 <= 0
    denom = np.sqrt(np.where(flat, 1.0, s2) * s3)
    return np.where(flat, 0.0, s1 / denom)


def search_best(
    target: Samples, template: Samples, exhaustive: bool = False
) -> WindowMatch:
    """
    Best-scoring template position inside ``target``.

    Every position where the template fits is scored; the strictly greatest
    score wins and ties keep the first position in row-major order (smallest
    ``y``, then smallest ``x``).

    The surface only shortlists positions within ``NEAR_TIE_TOLERANCE`` of
    its peak; those are rescored exactly before the winner is picked.

    Args:
        target: Target buffer or intensity grid.
        template: Template buffer or intensity grid; must fit inside target.
        exhaustive: Run the literal per-window loop over :func:`score`
            instead of scoring the whole surface at once. Same result, much
            slower; kept as the reference implementation.

    Raises:
        InvalidDimensionError: If the template is larger than the target.
    """
    t = _samples(target)
    k = _samples(template)
    if exhaustive:
        return _search_exhaustive(t, k)

    surface = score_surface(t, k)
    th, tw = k.shape
    if not surface.any():
        return WindowMatch(x=0, y=0, score=score(t[:th, :tw], k))

    # flatnonzero keeps row-major order
    near = np.flatnonzero(surface >= float(surface.max()) - NEAR_TIE_TOLERANCE)
    ys, xs = np.divmod(near, surface.shape[1])
    exact = _rescore(t, k, ys, xs)
    pick = int(np.argmax(exact))
    y, x = int(ys[pick]), int(xs[pick])
    return WindowMatch(x=x, y=y, score=score(t[y : y + th, x : x + tw], k))


def _rescore(t: np.ndarray, k: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """Exact scores of the windows whose top-left corners are ``(xs, ys)``."""
    windows = sliding_window_view(t, k.shape)
    s3 = float(np.sum(k * k))
    out = np.zeros(len(ys), dtype=np.float64)
    for start in range(0, len(ys), RESCORE_CHUNK):
        stop = start + RESCORE_CHUNK
        block = windows[ys[start:stop], xs[start:stop]]
        s1 = np.einsum("nij,ij->n", block, k)
        s2 = np.einsum("nij,nij->n", block, block)
        flat = s2 <= 0
        out[start:stop] = np.where(flat, 0.0, s1 / np.sqrt(np.where(flat, 1.0, s2) * s3))
    return out


def _search_exhaustive(t: np.ndarray, k: np.ndarray) -> WindowMatch:
    _check_fit(t, k)
    th, tw = k.shape
    best_score = -1.0
    best_x = 0
    best_y = 0
    for y in range(t.shape[0] - th + 1):
        for x in range(t.shape[1] - tw + 1):
            s = score(t[y : y + th, x : x + tw], k)
            if s > best_score:
                best_score = s
                best_x = x
                best_y = y
    return WindowMatch(x=best_x, y=best_y, score=float(best_score))
