"""Shared synthetic image fixtures"""
import numpy as np
import pytest

from scalematch.pixels import PixelBuffer, Selection

PATTERN_X = 20
PATTERN_Y = 15
PATTERN_SIDE = 10


def _pattern(side: int) -> np.ndarray:
    yy, xx = np.mgrid[0:side, 0:side]
    return (40 + ((xx * 7 + yy * 13) % 200)).astype(np.uint8)


def make_textured(width: int, height: int, seed: int = 0) -> np.ndarray:
    """Blocky random RGB texture; blocks keep it stable under resampling."""
    rng = np.random.default_rng(seed)
    coarse = rng.integers(0, 256, size=(height // 8 + 1, width // 8 + 1, 3))
    img = np.kron(coarse, np.ones((8, 8, 1)))[:height, :width]
    return img.astype(np.uint8)


@pytest.fixture
def pattern_target():
    """50x50 dim target with a distinct 10x10 pattern at (20, 15)"""
    img = np.full((50, 50), 30, dtype=np.uint8)
    img[PATTERN_Y : PATTERN_Y + PATTERN_SIDE, PATTERN_X : PATTERN_X + PATTERN_SIDE] = _pattern(
        PATTERN_SIDE
    )
    return PixelBuffer.from_array(img)


@pytest.fixture
def pattern_template():
    return PixelBuffer.from_array(_pattern(PATTERN_SIDE))


@pytest.fixture
def textured():
    """Reference and target share one 160x120 texture"""
    return PixelBuffer.from_array(make_textured(160, 120))


@pytest.fixture
def selection():
    return Selection(x=48, y=40, width=32, height=32)
