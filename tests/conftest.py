"""Shared fixtures for the kcftrack test suite."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from kcftrack import TrackerOptions, KCFTracker  # noqa: E402

from .synthetic import make_square_frame, make_checker_frame  # noqa: E402

SQUARE_START = (60, 60)
SQUARE_SIZE = 32


@pytest.fixture
def raw_options():
    """Raw gray features with scale search."""
    return TrackerOptions.resolve(hog=False, multiscale=True)


@pytest.fixture
def hog_options():
    return TrackerOptions.resolve(hog=True, fixed_window=True)


@pytest.fixture
def lab_options():
    return TrackerOptions.resolve(hog=True, fixed_window=True, lab=True)


@pytest.fixture
def square_frame():
    x, y = SQUARE_START
    return make_square_frame(x, y, SQUARE_SIZE)


@pytest.fixture
def checker_frame():
    x, y = SQUARE_START
    return make_checker_frame(x, y, SQUARE_SIZE)


@pytest.fixture
def square_region():
    x, y = SQUARE_START
    return (x, y, SQUARE_SIZE, SQUARE_SIZE)


@pytest.fixture
def make_tracker():
    """Factory for trackers with a fixed id."""
    def _make(options, tracker_id="test"):
        return KCFTracker(options=options, tracker_id=tracker_id)
    return _make
