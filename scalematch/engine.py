"""
Matching engine: preprocesses both images, cuts the template out of the
reference, runs the scale sweep over the target and picks the best hit.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import AlreadyRunningError, InvalidOptionError, MatchCancelledError
from .offload import OffloadChannel
from .pixels import (
    PixelBuffer,
    Selection,
    SelectionLike,
    as_selection,
    extract_template,
    optimal_size,
    resize,
    to_grayscale,
)
from .sweep import MatchCandidate, ProgressCallback, sweep

logger = logging.getLogger(__name__)

# ---------- configuration ----------
DEFAULT_SCALES = (0.5, 0.75, 1.0, 1.25)
DEFAULT_THRESHOLD = 0.6
DEFAULT_TARGET_SIZE = 1200
PROFILE_ENV = "SCALEMATCH_PROFILE"


class EngineState(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class MatchOptions:
    scales: Tuple[float, ...] = DEFAULT_SCALES
    threshold: float = DEFAULT_THRESHOLD
    target_size: int = DEFAULT_TARGET_SIZE
    # Accepted for compatibility; no rotation search is performed.
    enable_rotation: bool = False

    def __post_init__(self) -> None:
        scales = tuple(float(s) for s in self.scales)
        if not scales:
            raise InvalidOptionError("At least one scale is required")
        if any(s <= 0 for s in scales):
            raise InvalidOptionError(f"Scales must be positive, got {list(scales)}")
        if not 0.0 <= self.threshold <= 1.0:
            raise InvalidOptionError(f"Threshold must be within [0, 1], got {self.threshold}")
        if isinstance(self.target_size, bool) or int(self.target_size) != self.target_size:
            raise InvalidOptionError(f"Target size must be an integer, got {self.target_size!r}")
        if self.target_size <= 0:
            raise InvalidOptionError(f"Target size must be positive, got {self.target_size}")
        object.__setattr__(self, "scales", scales)
        object.__setattr__(self, "target_size", int(self.target_size))

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "MatchOptions":
        """Build options from a mapping, camelCase or snake_case keys."""
        if not values:
            return cls()
        aliases = {"targetSize": "target_size", "enableRotation": "enable_rotation"}
        known = {"scales", "threshold", "target_size", "enable_rotation"}
        kwargs: Dict[str, Any] = {}
        for key, value in values.items():
            name = aliases.get(key, key)
            if name not in known:
                raise InvalidOptionError(f"Unknown option '{key}'")
            if value is not None:
                kwargs[name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class MatchMetadata:
    template_width: int
    template_height: int
    scales: Tuple[float, ...]
    elapsed_ms: float
    processed_target_size: Tuple[int, int]
    original_target_size: Tuple[int, int]
    enable_rotation: bool = False


@dataclass(frozen=True)
class MatchResult:
    success: bool
    candidates: List[MatchCandidate] = field(default_factory=list)
    best: Optional[MatchCandidate] = None
    metadata: Optional[MatchMetadata] = None
    error: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def failed(cls, message: str, cancelled: bool = False) -> "MatchResult":
        return cls(success=False, error=message, cancelled=cancelled)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if not self.success:
            out["error"] = self.error
            out["cancelled"] = self.cancelled
            return out
        out["match"] = self.best.to_dict() if self.best else None
        out["matches"] = [c.to_dict() for c in self.candidates]
        if self.metadata is not None:
            meta = self.metadata
            out.update(
                {
                    "template": {"width": meta.template_width, "height": meta.template_height},
                    "scales": list(meta.scales),
                    "elapsed_ms": meta.elapsed_ms,
                    "processed_target": list(meta.processed_target_size),
                    "original_target": list(meta.original_target_size),
                }
            )
        return out


def select_best_result(candidates: Sequence[MatchCandidate]) -> MatchCandidate:
    """Highest score wins, first seen on ties; placeholder when empty."""
    if not candidates:
        return MatchCandidate.placeholder()
    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.score > best.score:
            best = candidate
    return best


def preprocess_image(image: PixelBuffer, target_size: int) -> PixelBuffer:
    width, height = optimal_size(image.width, image.height, target_size)
    return to_grayscale(resize(image, width, height))


def normalize_selection(
    selection: Selection, original: PixelBuffer, processed: PixelBuffer
) -> Selection:
    return selection.scaled(
        processed.width / original.width, processed.height / original.height
    )


def _profile_enabled() -> bool:
    value = os.getenv(PROFILE_ENV, "").strip().lower()
    return value not in ("", "0", "false", "no")


class MatchingEngine:
    """
    One matching session handle.

    Only one :meth:`match` may run at a time; a second call while the first
    is processing raises :class:`AlreadyRunningError` without waiting.

    Args:
        on_progress: Called as ``(percent, message)`` after every scale.
        offload: Optional channel used to run the scales in worker processes.
    """

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        offload: Optional[OffloadChannel] = None,
    ) -> None:
        self.on_progress = on_progress
        self.offload = offload
        self._gate = threading.Lock()
        self._state = EngineState.IDLE
        self._cancel_requested = False

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state is EngineState.PROCESSING

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        self.on_progress = callback

    def cancel(self) -> None:
        """Ask the running sweep to stop at its next scale boundary."""
        self._cancel_requested = True

    def match(
        self,
        reference: PixelBuffer,
        target: PixelBuffer,
        selection: SelectionLike,
        options: Union[MatchOptions, Mapping[str, Any], None] = None,
    ) -> MatchResult:
        if not self._gate.acquire(blocking=False):
            raise AlreadyRunningError("A match is already in progress")
        self._state = EngineState.PROCESSING
        self._cancel_requested = False
        try:
            result = self._run(reference, target, selection, options)
            self._state = EngineState.COMPLETED if result.success else EngineState.FAILED
            return result
        finally:
            logger.debug("Engine leaving state %s", self._state.value)
            self._state = EngineState.IDLE
            self._cancel_requested = False
            self._gate.release()

    def _run(
        self,
        reference: PixelBuffer,
        target: PixelBuffer,
        selection: SelectionLike,
        options: Union[MatchOptions, Mapping[str, Any], None],
    ) -> MatchResult:
        profile = _profile_enabled()
        t0 = time.perf_counter()
        marks: List[Tuple[str, float]] = []

        try:
            opts = options if isinstance(options, MatchOptions) else MatchOptions.from_mapping(options)
            if opts.enable_rotation:
                logger.warning("Rotation search is not implemented; enable_rotation is ignored")

            processed_ref = preprocess_image(reference, opts.target_size)
            processed_target = preprocess_image(target, opts.target_size)
            if profile:
                marks.append(("preprocess", time.perf_counter()))

            sel = normalize_selection(as_selection(selection), reference, processed_ref)
            template = extract_template(processed_ref, sel)
            if profile:
                marks.append(("template", time.perf_counter()))

            candidates = sweep(
                processed_target,
                template,
                opts.scales,
                opts.threshold,
                on_progress=self.on_progress,
                should_abort=lambda: self._cancel_requested,
                offload=self.offload,
            )
            if profile:
                marks.append(("sweep", time.perf_counter()))

            best = select_best_result(candidates)
        except MatchCancelledError as exc:
            logger.info("Match cancelled")
            return MatchResult.failed(str(exc), cancelled=True)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Matching failed")
            return MatchResult.failed(str(exc) or type(exc).__name__)

        t_end = time.perf_counter()
        if profile:
            prev = t0
            parts = []
            for label, ts in marks:
                parts.append(f"{label}={((ts - prev) * 1000.0):.2f}ms")
                prev = ts
            parts.append(f"total={((t_end - t0) * 1000.0):.2f}ms")
            logger.info("matcher profile: %s", " ".join(parts))

        metadata = MatchMetadata(
            template_width=template.width,
            template_height=template.height,
            scales=opts.scales,
            elapsed_ms=(t_end - t0) * 1000.0,
            processed_target_size=(processed_target.width, processed_target.height),
            original_target_size=(target.width, target.height),
            enable_rotation=opts.enable_rotation,
        )
        return MatchResult(
            success=True,
            candidates=list(candidates) if candidates else [best],
            best=best,
            metadata=metadata,
        )
