import logging

import numpy as np
import pytest

from scalematch.engine import (
    EngineState,
    MatchingEngine,
    MatchOptions,
    normalize_selection,
    preprocess_image,
    select_best_result,
)
from scalematch.errors import AlreadyRunningError, InvalidOptionError
from scalematch.pixels import PixelBuffer, Selection
from scalematch.sweep import MatchCandidate


def _key(candidate):
    return (
        candidate.x,
        candidate.y,
        candidate.width,
        candidate.height,
        round(candidate.score, 9),
        candidate.scale,
    )


def test_match_finds_selection_in_identical_image(textured, selection):
    result = MatchingEngine().match(textured, textured, selection)
    assert result.success
    assert result.error is None
    best = result.best
    assert best.scale == 1.0
    assert (best.x, best.y, best.width, best.height) == (48, 40, 32, 32)
    assert best.score >= 0.999
    assert best in result.candidates
    assert result.metadata.template_width == 32
    assert result.metadata.scales == (0.5, 0.75, 1.0, 1.25)
    assert result.metadata.processed_target_size == (160, 120)


def test_match_accepts_mapping_selection_and_options(textured):
    result = MatchingEngine().match(
        textured,
        textured,
        {"x": 48, "y": 40, "width": 32, "height": 32},
        {"scales": [1.0], "threshold": 0.5, "targetSize": 1200},
    )
    assert result.success
    assert [c.scale for c in result.candidates] == [1.0]


def test_selection_follows_preprocessing_scale(textured, selection):
    result = MatchingEngine().match(
        textured, textured, selection, MatchOptions(scales=(1.0,), target_size=80)
    )
    assert result.success
    assert result.metadata.processed_target_size == (80, 60)
    assert (result.metadata.template_width, result.metadata.template_height) == (16, 16)
    assert (result.best.x, result.best.y) == (24, 20)


def test_no_candidate_above_threshold_gives_placeholder(pattern_template):
    dark = PixelBuffer.from_array(np.zeros((60, 60), dtype=np.uint8))
    result = MatchingEngine().match(
        pattern_template, dark, Selection(0, 0, 10, 10), MatchOptions(scales=(1.0, 2.0))
    )
    assert result.success
    assert len(result.candidates) == 1
    assert result.best.is_placeholder
    assert result.candidates[0].is_placeholder


def test_second_match_while_processing_is_rejected(textured, selection):
    engine = MatchingEngine()
    rejected = []
    seen_states = []

    def on_progress(pct, msg):
        seen_states.append(engine.state)
        try:
            engine.match(textured, textured, selection)
        except AlreadyRunningError as exc:
            rejected.append(exc)

    engine.set_progress_callback(on_progress)
    result = engine.match(textured, textured, selection)
    baseline = MatchingEngine().match(textured, textured, selection)

    assert len(rejected) == 4
    assert set(seen_states) == {EngineState.PROCESSING}
    assert result.success
    assert [_key(c) for c in result.candidates] == [_key(c) for c in baseline.candidates]
    assert engine.state is EngineState.IDLE


def test_state_returns_to_idle_after_failure(textured):
    engine = MatchingEngine()
    result = engine.match(textured, textured, Selection(150, 110, 40, 40))
    assert not result.success
    assert "outside" in result.error
    assert engine.state is EngineState.IDLE
    assert not engine.is_processing
    again = engine.match(textured, textured, Selection(0, 0, 32, 32))
    assert again.success


def test_cancel_stops_at_scale_boundary(textured, selection):
    engine = MatchingEngine()
    progress = []

    def on_progress(pct, msg):
        progress.append(pct)
        engine.cancel()

    engine.set_progress_callback(on_progress)
    result = engine.match(textured, textured, selection)
    assert not result.success
    assert result.cancelled
    assert progress == [25.0]
    assert engine.state is EngineState.IDLE

    engine.set_progress_callback(None)
    assert engine.match(textured, textured, selection).success


@pytest.mark.parametrize(
    "options",
    [
        {"threshold": 1.5},
        {"scales": []},
        {"scales": [1.0, -0.5]},
        {"target_size": 0},
        {"colour": "red"},
    ],
)
def test_invalid_options_give_failed_result(textured, selection, options):
    result = MatchingEngine().match(textured, textured, selection, options)
    assert not result.success
    assert not result.cancelled
    assert result.error


def test_options_validation_raises_directly():
    with pytest.raises(InvalidOptionError):
        MatchOptions(threshold=-0.1)
    with pytest.raises(InvalidOptionError):
        MatchOptions(target_size=12.5)


def test_rotation_flag_is_accepted_but_inert(textured, selection, caplog):
    with caplog.at_level(logging.WARNING, logger="scalematch.engine"):
        result = MatchingEngine().match(
            textured, textured, selection, {"enableRotation": True, "scales": [1.0]}
        )
    assert result.success
    assert result.metadata.enable_rotation
    assert "Rotation search is not implemented" in caplog.text


def test_profile_logging(monkeypatch, textured, selection, caplog):
    monkeypatch.setenv("SCALEMATCH_PROFILE", "1")
    with caplog.at_level(logging.INFO, logger="scalematch.engine"):
        MatchingEngine().match(textured, textured, selection, {"scales": [1.0]})
    assert "matcher profile: preprocess=" in caplog.text
    assert "total=" in caplog.text


def test_select_best_result_first_wins_ties():
    a = MatchCandidate(1, 1, 5, 5, 0.8, 0.5)
    b = MatchCandidate(2, 2, 5, 5, 0.9, 0.75)
    c = MatchCandidate(3, 3, 5, 5, 0.9, 1.0)
    assert select_best_result([a, b, c]) is b
    assert select_best_result([]).is_placeholder


def test_preprocess_and_normalize_selection(textured):
    processed = preprocess_image(textured, 80)
    assert (processed.width, processed.height) == (80, 60)
    assert (processed.data[:, :, 0] == processed.data[:, :, 2]).all()
    sel = normalize_selection(Selection(10, 20, 30, 40), textured, processed)
    assert sel == Selection(5, 10, 15, 20)


def test_result_to_dict(textured, selection):
    payload = MatchingEngine().match(textured, textured, selection).to_dict()
    assert payload["success"] is True
    assert payload["match"]["x"] == 48
    assert payload["template"] == {"width": 32, "height": 32}
    assert payload["processed_target"] == [160, 120]
    assert len(payload["matches"]) >= 1

    failed = MatchingEngine().match(textured, textured, Selection(0, 0, 0, 0)).to_dict()
    assert failed["success"] is False
    assert failed["cancelled"] is False
    assert "error" in failed


def test_fractional_selection_is_rounded_not_truncated(textured):
    result = MatchingEngine().match(
        textured,
        textured,
        {"x": 47.6, "y": 39.5, "width": 32.4, "height": 31.5},
        {"scales": [1.0]},
    )
    assert result.success
    assert (result.best.x, result.best.y) == (48, 40)
    assert (result.metadata.template_width, result.metadata.template_height) == (32, 32)
