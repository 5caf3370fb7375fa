"""
Multi-scale template matching: find a region selected in one image inside a
second, possibly differently scaled image.
"""

from .engine import (
    EngineState,
    MatchingEngine,
    MatchMetadata,
    MatchOptions,
    MatchResult,
    select_best_result,
)
from .errors import (
    AlreadyRunningError,
    InvalidDimensionError,
    InvalidOptionError,
    MatchCancelledError,
    OffloadChannelError,
    ScaleMatchError,
    SelectionOutOfBoundsError,
)
from .kernel import WindowMatch, score, search_best
from .offload import OffloadChannel, OffloadReply, OffloadRequest
from .pixels import (
    PixelBuffer,
    Selection,
    extract_template,
    optimal_size,
    resize,
    to_grayscale,
)
from .sweep import MatchCandidate, generate_scales, match_at_scale
from .version import __version__

__all__ = [
    "AlreadyRunningError",
    "EngineState",
    "InvalidDimensionError",
    "InvalidOptionError",
    "MatchCancelledError",
    "MatchCandidate",
    "MatchMetadata",
    "MatchOptions",
    "MatchResult",
    "MatchingEngine",
    "OffloadChannel",
    "OffloadChannelError",
    "OffloadReply",
    "OffloadRequest",
    "PixelBuffer",
    "ScaleMatchError",
    "Selection",
    "SelectionOutOfBoundsError",
    "WindowMatch",
    "__version__",
    "extract_template",
    "generate_scales",
    "match_at_scale",
    "optimal_size",
    "resize",
    "score",
    "search_best",
    "select_best_result",
    "to_grayscale",
]
