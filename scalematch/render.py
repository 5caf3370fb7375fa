"""
Helpers for callers that display results: re-filtering by similarity,
drawing candidate rectangles with score badges and text summaries.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from .engine import MatchResult, select_best_result
from .pixels import PixelBuffer
from .sweep import MatchCandidate

BEST_COLOR = (220, 38, 38)
OTHER_COLOR = (107, 114, 128)
BADGE_BG = (0, 0, 0)
BADGE_ALPHA = 0.7
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.4


def filter_matches(
    candidates: Sequence[MatchCandidate], min_score: float
) -> List[MatchCandidate]:
    return [c for c in candidates if c.score >= min_score and not c.is_placeholder]


def calculate_display_size(
    width: int, height: int, max_width: int, max_height: int
) -> Tuple[int, int]:
    ratio = min(max_width / width, max_height / height, 1.0)
    return max(1, int(round(width * ratio))), max(1, int(round(height * ratio)))


def _ensure_rgb(image: Union[PixelBuffer, np.ndarray]) -> np.ndarray:
    if isinstance(image, PixelBuffer):
        image = image.data
    if image.ndim == 2:
        return np.stack([image] * 3, axis=-1)
    if image.shape[2] == 4:
        return np.ascontiguousarray(image[:, :, :3])
    return image.copy()


def _draw_badge(canvas: np.ndarray, text: str, right: int, bottom: int) -> None:
    (tw, th), baseline = cv2.getTextSize(text, FONT, FONT_SCALE, 1)
    x0 = max(0, right - tw - 8)
    y0 = max(0, bottom - th - baseline - 4)
    x1 = min(canvas.shape[1], right)
    y1 = min(canvas.shape[0], bottom)
    if x1 <= x0 or y1 <= y0:
        return
    patch = canvas[y0:y1, x0:x1].astype(np.float32)
    bg = np.array(BADGE_BG, dtype=np.float32)
    canvas[y0:y1, x0:x1] = (patch * (1 - BADGE_ALPHA) + bg * BADGE_ALPHA).astype(np.uint8)
    cv2.putText(
        canvas, text, (x0 + 4, y1 - baseline - 2), FONT, FONT_SCALE, (255, 255, 255), 1, cv2.LINE_AA
    )


def render_matches(
    image: Union[PixelBuffer, np.ndarray],
    candidates: Sequence[MatchCandidate],
    coord_size: Optional[Tuple[int, int]] = None,
    max_size: Optional[Tuple[int, int]] = None,
) -> np.ndarray:
    """
    Draw every candidate on a copy of ``image`` (RGB or RGBA).

    Args:
        image: Image to draw on, typically the original target.
        candidates: Candidates to draw; the best one is red and thicker.
        coord_size: ``(width, height)`` of the space the candidate
            coordinates live in (the processed target). Defaults to the
            image size.
        max_size: Optional ``(width, height)`` box to shrink the output into.

    Returns:
        RGB uint8 array.
    """
    canvas = _ensure_rgb(image)
    h, w = canvas.shape[:2]
    if max_size is not None:
        dw, dh = calculate_display_size(w, h, max_size[0], max_size[1])
        if (dw, dh) != (w, h):
            canvas = cv2.resize(canvas, (dw, dh), interpolation=cv2.INTER_AREA)
            w, h = dw, dh
    canvas = np.ascontiguousarray(canvas, dtype=np.uint8)

    drawable = [c for c in candidates if not c.is_placeholder]
    if not drawable:
        return canvas
    cw, ch = coord_size if coord_size is not None else image_size(image)
    sx = w / cw
    sy = h / ch
    best = select_best_result(drawable)

    for match in drawable:
        x0 = int(round(match.x * sx))
        y0 = int(round(match.y * sy))
        x1 = int(round((match.x + match.width) * sx))
        y1 = int(round((match.y + match.height) * sy))
        is_best = match is best
        cv2.rectangle(
            canvas,
            (x0, y0),
            (x1, y1),
            BEST_COLOR if is_best else OTHER_COLOR,
            3 if is_best else 2,
        )
        _draw_badge(canvas, f"{int(round(match.score * 100))}%", x1 - 5, y1 - 5)
    return canvas


def image_size(image: Union[PixelBuffer, np.ndarray]) -> Tuple[int, int]:
    if isinstance(image, PixelBuffer):
        return image.width, image.height
    return image.shape[1], image.shape[0]


def format_match_summary(result: MatchResult, min_score: Optional[float] = None) -> str:
    if not result.success:
        prefix = "Matching cancelled" if result.cancelled else "Matching failed"
        return f"{prefix}: {result.error}"
    candidates = result.candidates
    if min_score is not None:
        candidates = filter_matches(candidates, min_score)
    real = [c for c in candidates if not c.is_placeholder]
    if not real:
        return "No confident match found."
    best = select_best_result(real)
    lines = [
        f"Matches: {len(real)}",
        f"Best score: {best.score:.3f} ({int(round(best.score * 100))}%) | "
        f"Scale: {best.scale:.4f}",
        f"Position: x={best.x}, y={best.y}, size={best.width}x{best.height}",
        f"Time: {best.elapsed_ms:.0f} ms",
    ]
    if result.metadata is not None and result.metadata.enable_rotation:
        lines.append("Rotation search requested but not performed.")
    return "\n".join(lines)
