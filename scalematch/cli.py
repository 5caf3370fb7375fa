"""Command line entry point: match a selection from one image inside another."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .engine import DEFAULT_TARGET_SIZE, DEFAULT_THRESHOLD, MatchingEngine, MatchOptions
from .errors import ScaleMatchError
from .io import load_image, save_image, to_rgb
from .offload import OffloadChannel
from .pixels import Selection
from .render import filter_matches, format_match_summary, render_matches
from .sweep import generate_scales

LOG_LEVEL_ENV = "SCALEMATCH_LOG_LEVEL"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scalematch",
        description="Find a region selected in a reference image inside a target image.",
    )
    parser.add_argument("reference", help="Image the selection is taken from.")
    parser.add_argument("target", help="Image to search.")
    parser.add_argument(
        "--selection",
        nargs=4,
        type=int,
        required=True,
        metavar=("X", "Y", "W", "H"),
        help="Selection rectangle in reference image pixels.",
    )
    scale_group = parser.add_mutually_exclusive_group()
    scale_group.add_argument(
        "--scales", nargs="+", type=float, help="Explicit scale factors to sweep."
    )
    scale_group.add_argument(
        "--scale-count",
        type=int,
        help="Generate this many scales evenly spaced between 0.5 and 1.0.",
    )
    parser.add_argument(
        "--constrained",
        action="store_true",
        help="Cap --scale-count at three scales (small-screen device policy).",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_THRESHOLD,
        help="Minimum score for a scale to yield a candidate.",
    )
    parser.add_argument(
        "--target-size",
        type=int,
        default=DEFAULT_TARGET_SIZE,
        help="Longest side both images are reduced to before matching.",
    )
    parser.add_argument(
        "--rotation",
        action="store_true",
        help="Request rotation search (accepted but not performed).",
    )
    parser.add_argument(
        "--offload",
        action="store_true",
        help="Run each scale in a worker process.",
    )
    parser.add_argument(
        "--workers", type=int, default=None, help="Worker processes for --offload."
    )
    parser.add_argument(
        "--min-score",
        type=float,
        default=None,
        help="Only report candidates at or above this score.",
    )
    parser.add_argument("--output", help="Write an overlay image with the matches here.")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_progress(percent: float, message: str) -> None:
    print(f"[{percent:5.1f}%] {message}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.constrained and args.scale_count is None:
        parser.error("--constrained only applies to --scale-count")
    _configure_logging(args.verbose)

    try:
        if args.scale_count is not None:
            scales = generate_scales(args.scale_count, constrained=args.constrained)
        elif args.scales:
            scales = args.scales
        else:
            scales = None
        options = MatchOptions.from_mapping(
            {
                "scales": scales,
                "threshold": args.threshold,
                "target_size": args.target_size,
                "enable_rotation": args.rotation,
            }
        )
        reference = load_image(args.reference)
        target = load_image(args.target)
    except (ScaleMatchError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    channel = OffloadChannel(max_workers=args.workers) if args.offload else None
    try:
        engine = MatchingEngine(
            on_progress=None if args.json else _print_progress, offload=channel
        )
        result = engine.match(reference, target, Selection(*args.selection), options)
    finally:
        if channel is not None:
            channel.close()

    if args.json:
        payload = result.to_dict()
        if result.success and args.min_score is not None:
            payload["matches"] = [
                c.to_dict() for c in filter_matches(result.candidates, args.min_score)
            ]
        print(json.dumps(payload, indent=2))
    else:
        print(format_match_summary(result, min_score=args.min_score))

    if not result.success:
        return 1

    if args.output:
        shown = result.candidates
        if args.min_score is not None:
            shown = filter_matches(shown, args.min_score)
        overlay = render_matches(
            to_rgb(target), shown, coord_size=result.metadata.processed_target_size
        )
        save_image(args.output, overlay)
    return 0


if __name__ == "__main__":
    sys.exit(main())
