"""
Scale sweep: resize the template across a list of scale factors, search the
target at each one and project hits back to unscaled target coordinates.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import asdict, dataclass, replace
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

import cv2

from .errors import InvalidOptionError, MatchCancelledError
from .kernel import search_best
from .pixels import PixelBuffer, resize, round_half_up

if TYPE_CHECKING:
    from .offload import OffloadChannel

logger = logging.getLogger(__name__)

# ---------- configuration ----------
SCALE_MIN = 0.5
SCALE_MAX = 1.0
CONSTRAINED_MAX_SCALES = 3
MIN_TEMPLATE_SIDE = 10

ProgressCallback = Callable[[float, str], None]


@dataclass(frozen=True)
class MatchCandidate:
    x: int
    y: int
    width: int
    height: int
    score: float
    scale: float
    elapsed_ms: float = 0.0

    @classmethod
    def placeholder(cls) -> "MatchCandidate":
        return cls(x=0, y=0, width=0, height=0, score=0.0, scale=1.0)

    @property
    def is_placeholder(self) -> bool:
        return self.width == 0 and self.height == 0 and self.score == 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def generate_scales(count: int, constrained: bool = False) -> List[float]:
    """
    Evenly spaced scale factors from 0.5 up to 1.0 inclusive.

    Constrained (small-screen) devices are capped at three scales.
    """
    if count < 1:
        raise InvalidOptionError(f"Scale count must be at least 1, got {count}")
    actual = min(count, CONSTRAINED_MAX_SCALES) if constrained else count
    if actual == 1:
        raise InvalidOptionError("Scale count of 1 leaves no range to sweep; use 2 or more")
    step = (SCALE_MAX - SCALE_MIN) / (actual - 1)
    return [SCALE_MIN + i * step for i in range(actual)]


def scaled_template(template: PixelBuffer, scale: float) -> Optional[PixelBuffer]:
    ws = round_half_up(template.width * scale)
    hs = round_half_up(template.height * scale)
    if ws < MIN_TEMPLATE_SIDE or hs < MIN_TEMPLATE_SIDE:
        return None
    if (ws, hs) == (template.width, template.height):
        return template
    # area averaging keeps small patterns from aliasing when shrinking
    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    return resize(template, ws, hs, interpolation=interpolation)


def match_at_scale(
    target: PixelBuffer,
    template: PixelBuffer,
    scale: float,
    threshold: float,
) -> Optional[MatchCandidate]:
    if scale <= 0:
        raise InvalidOptionError(f"Scale must be positive, got {scale}")
    scaled = scaled_template(template, scale)
    if scaled is None:
        logger.debug("Skipping scale %.2f - template too small", scale)
        return None
    if scaled.width > target.width or scaled.height > target.height:
        logger.debug("Skipping scale %.2f - template larger than target", scale)
        return None

    best = search_best(target, scaled)
    if best.score < threshold:
        return None
    return MatchCandidate(
        x=round_half_up(best.x / scale),
        y=round_half_up(best.y / scale),
        width=round_half_up(scaled.width / scale),
        height=round_half_up(scaled.height / scale),
        score=best.score,
        scale=scale,
    )


def _report(on_progress: Optional[ProgressCallback], done: int, total: int, scale: float) -> None:
    if on_progress is None:
        return
    on_progress(100.0 * done / total, f"Scale {scale:.2f}x processed ({done}/{total})")


def _check_abort(should_abort: Optional[Callable[[], bool]]) -> None:
    if should_abort is not None and should_abort():
        raise MatchCancelledError("Matching cancelled")


def sweep(
    target: PixelBuffer,
    template: PixelBuffer,
    scales: Sequence[float],
    threshold: float,
    on_progress: Optional[ProgressCallback] = None,
    should_abort: Optional[Callable[[], bool]] = None,
    offload: Optional["OffloadChannel"] = None,
) -> List[MatchCandidate]:
    """
    Run :func:`match_at_scale` for every scale, in the order given.

    Progress is reported after each scale. ``should_abort`` is polled only at
    scale boundaries. A failure at one scale is logged and counts as "no
    candidate" for that scale. Every returned candidate carries the same
    elapsed time: the duration of the whole sweep.

    When ``offload`` is given, all scales are dispatched to the channel up
    front and their replies are joined in list order. A scale that cannot be
    dispatched is treated like a failed one. Requests still outstanding when
    the sweep exits are cancelled.

    Raises:
        MatchCancelledError: If ``should_abort`` returned True at a boundary.
    """
    start = time.perf_counter()
    total = len(scales)
    found: List[MatchCandidate] = []

    if offload is None:
        for i, scale in enumerate(scales):
            _check_abort(should_abort)
            try:
                candidate = match_at_scale(target, template, scale, threshold)
            except Exception:  # pylint: disable=broad-except
                logger.warning("Scale %s failed; skipping", scale, exc_info=True)
                candidate = None
            if candidate is not None:
                found.append(candidate)
            _report(on_progress, i + 1, total, scale)
    else:
        futures: List[Optional[Future]] = []
        try:
            for scale in scales:
                try:
                    futures.append(offload.submit(target, template, scale, threshold))
                except Exception:  # pylint: disable=broad-except
                    logger.warning("Could not dispatch scale %s; skipping", scale, exc_info=True)
                    futures.append(None)
            for i, (scale, future) in enumerate(zip(scales, futures)):
                _check_abort(should_abort)
                candidate = None
                if future is not None:
                    try:
                        candidate = future.result()
                    except Exception:  # pylint: disable=broad-except
                        logger.warning(
                            "Offloaded scale %s failed; skipping", scale, exc_info=True
                        )
                if candidate is not None:
                    found.append(candidate)
                _report(on_progress, i + 1, total, scale)
        finally:
            for future in futures:
                if future is not None:
                    future.cancel()

    elapsed_ms = (time.perf_counter() - start) * 1000.0
    return [replace(c, elapsed_ms=elapsed_ms) for c in found]
