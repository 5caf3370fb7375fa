#!/usr/bin/env python3

import argparse
import math
import statistics
import time
from typing import Dict, List, Optional, Tuple

import numpy as np

from scalematch.engine import DEFAULT_SCALES, MatchingEngine, MatchOptions
from scalematch.offload import OffloadChannel
from scalematch.pixels import PixelBuffer, Selection

# (name, target width, target height, selection side)
CASE_MATRIX: List[Tuple[str, int, int, int]] = [
    ("small", 240, 180, 32),
    ("medium", 480, 360, 48),
    ("large", 800, 600, 64),
]


def _percentile(sorted_vals: List[float], p: float) -> float:
    if not sorted_vals:
        return 0.0
    k = (len(sorted_vals) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    return sorted_vals[f] * (c - k) + sorted_vals[c] * (k - f)


def _format_ms(value_s: float) -> str:
    return f"{value_s * 1000.0:.2f} ms"


def _resolve_cases(selected: List[str]) -> List[Tuple[str, int, int, int]]:
    if not selected:
        return CASE_MATRIX
    by_name = {case[0]: case for case in CASE_MATRIX}
    resolved = []
    for name in selected:
        item = by_name.get(name)
        if not item:
            raise ValueError(f"Unknown case '{name}'. Available: {', '.join(by_name)}")
        resolved.append(item)
    return resolved


def make_case(
    width: int, height: int, side: int, seed: int = 0
) -> Tuple[PixelBuffer, PixelBuffer, Selection]:
    """Textured image used as both reference and target, plus a selection."""
    rng = np.random.default_rng(seed)
    coarse = rng.integers(0, 256, size=(height // 8 + 1, width // 8 + 1, 3))
    img = np.kron(coarse, np.ones((8, 8, 1)))[:height, :width].astype(np.uint8)
    buffer = PixelBuffer.from_array(img)
    sel = Selection(x=width // 3, y=height // 3, width=side, height=side)
    return buffer, buffer, sel


def _run_benchmark(
    cases: List[Tuple[str, int, int, int]],
    iterations: int,
    repeats: int,
    warmup: int,
    options: MatchOptions,
    offload: Optional[OffloadChannel] = None,
) -> Dict[str, List[float]]:
    timings: Dict[str, List[float]] = {name: [] for name, _, _, _ in cases}
    engine = MatchingEngine(offload=offload)
    inputs = {name: make_case(w, h, side) for name, w, h, side in cases}

    for _ in range(warmup):
        for name, _, _, _ in cases:
            engine.match(*inputs[name], options)

    for _ in range(repeats):
        for _ in range(iterations):
            for name, _, _, _ in cases:
                start = time.perf_counter()
                result = engine.match(*inputs[name], options)
                timings[name].append(time.perf_counter() - start)
                if not result.success:
                    raise RuntimeError(f"Case {name} failed: {result.error}")

    return timings


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Benchmark matcher runtime.")
    parser.add_argument(
        "--iterations",
        type=int,
        default=5,
        help="Iterations per repeat (per case).",
    )
    parser.add_argument(
        "--repeats",
        type=int,
        default=3,
        help="Repeat count for the iteration loop.",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=1,
        help="Warmup passes before timing.",
    )
    parser.add_argument(
        "--case",
        action="append",
        default=[],
        help="Case name to benchmark (repeatable).",
    )
    parser.add_argument(
        "--scales",
        nargs="+",
        type=float,
        default=list(DEFAULT_SCALES),
        help="Scale factors to sweep.",
    )
    parser.add_argument(
        "--target-size",
        type=int,
        default=1200,
        help="Preprocessing target size.",
    )
    parser.add_argument(
        "--offload",
        action="store_true",
        help="Run scales through a worker-process offload channel.",
    )
    args = parser.parse_args(argv)

    options = MatchOptions(scales=tuple(args.scales), threshold=0.0, target_size=args.target_size)
    cases = _resolve_cases(args.case)

    channel = OffloadChannel() if args.offload else None
    try:
        timings = _run_benchmark(
            cases=cases,
            iterations=args.iterations,
            repeats=args.repeats,
            warmup=args.warmup,
            options=options,
            offload=channel,
        )
    finally:
        if channel is not None:
            channel.close()

    total_runs = sum(len(v) for v in timings.values())
    print(
        f"Runs: {total_runs} | cases: {len(cases)} | "
        f"iterations: {args.iterations} | repeats: {args.repeats} | warmup: {args.warmup}"
    )
    print(
        "sweep:",
        f"scales={options.scales}",
        f"target_size={options.target_size}",
        f"offload={args.offload}",
    )

    combined = []
    for name, values in timings.items():
        combined.extend(values)
        sorted_vals = sorted(values)
        print(
            f"{name}: median {_format_ms(statistics.median(sorted_vals))}, "
            f"mean {_format_ms(statistics.mean(sorted_vals))}, "
            f"p95 {_format_ms(_percentile(sorted_vals, 95))}, "
            f"min {_format_ms(sorted_vals[0])}, "
            f"max {_format_ms(sorted_vals[-1])}"
        )

    if combined:
        sorted_all = sorted(combined)
        print(
            f"overall: median {_format_ms(statistics.median(sorted_all))}, "
            f"mean {_format_ms(statistics.mean(sorted_all))}, "
            f"p95 {_format_ms(_percentile(sorted_all, 95))}, "
            f"min {_format_ms(sorted_all[0])}, "
            f"max {_format_ms(sorted_all[-1])}"
        )


if __name__ == "__main__":
    main()
