import numpy as np

from scalematch.engine import MatchingEngine, MatchResult
from scalematch.render import (
    BEST_COLOR,
    OTHER_COLOR,
    calculate_display_size,
    filter_matches,
    format_match_summary,
    render_matches,
)
from scalematch.sweep import MatchCandidate


def _cand(x, y, w, h, score, scale=1.0):
    return MatchCandidate(x=x, y=y, width=w, height=h, score=score, scale=scale)


def test_filter_matches_drops_low_scores_and_placeholders():
    keep = _cand(1, 1, 5, 5, 0.8)
    drop = _cand(2, 2, 5, 5, 0.4)
    kept = filter_matches([keep, drop, MatchCandidate.placeholder()], 0.5)
    assert kept == [keep]
    assert filter_matches([MatchCandidate.placeholder()], 0.0) == []


def test_calculate_display_size_fits_box_without_upscaling():
    assert calculate_display_size(200, 100, 100, 100) == (100, 50)
    assert calculate_display_size(100, 300, 100, 100) == (33, 100)
    assert calculate_display_size(50, 20, 100, 100) == (50, 20)


def test_render_draws_best_in_red_and_others_in_gray():
    image = np.zeros((80, 80, 3), dtype=np.uint8)
    best = _cand(5, 5, 50, 50, 0.95)
    other = _cand(20, 60, 15, 15, 0.7)
    out = render_matches(image, [other, best])
    assert out.shape == (80, 80, 3)
    assert tuple(out[5, 52]) == BEST_COLOR
    assert tuple(out[60, 32]) == OTHER_COLOR
    assert not image.any()


def test_render_maps_coordinate_space():
    image = np.zeros((80, 80, 4), dtype=np.uint8)
    out = render_matches(image, [_cand(5, 5, 10, 10, 0.9)], coord_size=(40, 40))
    assert out.shape == (80, 80, 3)
    assert tuple(out[10, 28]) == BEST_COLOR


def test_render_shrinks_to_max_size():
    image = np.zeros((100, 200, 3), dtype=np.uint8)
    out = render_matches(image, [], max_size=(100, 100))
    assert out.shape == (50, 100, 3)


def test_summary_for_failures():
    assert format_match_summary(MatchResult.failed("boom")) == "Matching failed: boom"
    cancelled = MatchResult.failed("Matching cancelled", cancelled=True)
    assert format_match_summary(cancelled).startswith("Matching cancelled:")


def test_summary_for_placeholder_only():
    placeholder = MatchCandidate.placeholder()
    result = MatchResult(success=True, candidates=[placeholder], best=placeholder)
    assert format_match_summary(result) == "No confident match found."


def test_summary_for_real_match(pattern_target, pattern_template):
    result = MatchingEngine().match(
        pattern_template, pattern_target, (0, 0, 10, 10), {"scales": [1.0]}
    )
    text = format_match_summary(result)
    assert "Matches: 1" in text
    assert "Position: x=20, y=15, size=10x10" in text
    assert format_match_summary(result, min_score=1.1) == "No confident match found."
