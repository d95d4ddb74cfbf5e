"""Tests for KCFTracker init/update and the verification gate."""

import dataclasses

import numpy as np
import pytest

from kcftrack.config import TrackerOptions
from kcftrack.correlation import Detection
from kcftrack.geometry import Rect
from kcftrack.tracker import KCFTracker, TrackingStatus, ScaleCheck

from .synthetic import (
    make_square_frame, make_checker_frame, make_occluded_frame, make_noise_frame,
)


class TestInit:
    def test_init_returns_clamped_region(self, hog_options, square_frame, square_region):
        tracker = KCFTracker(hog_options)
        assert tracker.init(square_region, square_frame)
        assert tracker.status == TrackingStatus.TRACKING
        assert tracker.get_region() == Rect.from_tuple(square_region)

    def test_init_partly_outside_frame(self, raw_options, square_frame):
        tracker = KCFTracker(raw_options)
        assert tracker.init((-40, 10, 32, 32), square_frame)
        assert tracker.get_region() == Rect(-31, 10, 32, 32)

    @pytest.mark.parametrize("region", [(10, 10, 15, 32), (10, 10, 32, 15), (10, 10, 0, 0)])
    def test_small_region_refused(self, hog_options, square_frame, region):
        tracker = KCFTracker(hog_options)
        assert not tracker.init(region, square_frame)
        assert tracker.status == TrackingStatus.INACTIVE
        assert tracker.get_region() is None
        assert not tracker.update(square_frame)

    def test_empty_frame_refused(self, hog_options, square_region):
        tracker = KCFTracker(hog_options)
        assert not tracker.init(square_region, None)
        assert not tracker.init(square_region, np.zeros((0, 0, 3), dtype=np.uint8))
        assert tracker.status == TrackingStatus.INACTIVE

    def test_failed_reinit_keeps_previous_target(self, hog_options, square_frame, square_region):
        tracker = KCFTracker(hog_options)
        assert tracker.init(square_region, square_frame)
        template = tracker.correlation_filter.template
        assert not tracker.init((0, 0, 8, 8), square_frame)
        assert tracker.get_region() == Rect.from_tuple(square_region)
        assert tracker.correlation_filter.template is template
        assert tracker.status == TrackingStatus.TRACKING

    def test_lab_init_captures_colour(self, lab_options, checker_frame, square_region):
        tracker = KCFTracker(lab_options)
        assert tracker.init(square_region, checker_frame)
        assert tracker.state.histogram_similarity == 1.0

    def test_generated_ids_are_unique(self):
        assert KCFTracker().tracker_id != KCFTracker().tracker_id


class TestTranslation:
    def test_raw_features_follow_moving_square(self, raw_options):
        tracker = KCFTracker(raw_options)
        x0, y0, size = 60, 60, 32
        assert tracker.init((x0, y0, size, size), make_square_frame(x0, y0, size))

        for step in range(1, 11):
            frame = make_square_frame(x0 + step, y0 + step, size)
            assert tracker.update(frame), f"lost at step {step}"
            cx, cy = tracker.get_region().center
            assert cx == pytest.approx(x0 + step + size / 2, abs=1.0)
            assert cy == pytest.approx(y0 + step + size / 2, abs=1.0)

        assert tracker.state.frame_index == 10
        assert tracker.state.peak_value >= 0.45

    def test_hog_features_follow_moving_target(self, hog_options):
        tracker = KCFTracker(hog_options)
        x0, y0, size = 60, 60, 32
        assert tracker.init((x0, y0, size, size), make_checker_frame(x0, y0, size))

        for step in range(1, 6):
            frame = make_checker_frame(x0 + step, y0, size)
            assert tracker.update(frame), f"lost at step {step}"
            cx, cy = tracker.get_region().center
            assert cx == pytest.approx(x0 + step + size / 2, abs=3.0)
            assert cy == pytest.approx(y0 + size / 2, abs=3.0)


class TestFailure:
    def test_noise_frame_is_lost(self, raw_options, square_frame, square_region):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        assert not tracker.update(make_noise_frame())
        assert tracker.status == TrackingStatus.LOST
        assert tracker.state.peak_value < 0.35
        # terminal
        assert not tracker.update(square_frame)

    @pytest.mark.parametrize("seed", [0, 4])
    def test_flat_target_gives_no_template_evidence_on_noise(self, square_frame, square_region,
                                                             seed):
        # default mode: HOG, fixed window, no colour check
        tracker = KCFTracker(TrackerOptions.resolve())
        assert tracker.init(square_region, square_frame)
        region = tracker.get_region()

        ok = tracker.update(make_noise_frame(seed=seed))
        state = tracker.state
        # the reference crop inside the square is one flat gray
        assert state.template_similarity == 0.5
        assert state.histogram_similarity == 0.0
        assert ok == (state.peak_value >= 0.45)
        if not ok:
            assert tracker.status == TrackingStatus.LOST
            assert tracker.get_region() == region

    @pytest.mark.parametrize("seed", [0, 1, 4])
    def test_hog_noise_is_judged_by_peak_only(self, hog_options, checker_frame, square_region,
                                              seed):
        tracker = KCFTracker(hog_options)
        assert tracker.init(square_region, checker_frame)

        ok = tracker.update(make_noise_frame(seed=seed))
        state = tracker.state
        assert abs(state.template_similarity - 0.5) < 0.18
        assert state.histogram_similarity == 0.0
        assert ok == (state.peak_value >= 0.45)

    @pytest.mark.parametrize("seed", [0, 1, 4])
    def test_lab_noise_fails_both_appearance_checks(self, lab_options, checker_frame,
                                                    square_region, seed):
        tracker = KCFTracker(lab_options)
        assert tracker.init(square_region, checker_frame)
        region = tracker.get_region()

        ok = tracker.update(make_noise_frame(seed=seed))
        state = tracker.state
        assert state.template_similarity < 0.68
        assert state.histogram_similarity < 0.7
        assert ok == (state.peak_value >= 0.45)
        if not ok:
            assert tracker.get_region() == region

    def test_pre_update_clamp_is_kept_after_loss(self, raw_options, monkeypatch):
        tracker = KCFTracker(raw_options)
        assert tracker.init((250, 250, 32, 32), make_square_frame(250, 250, 32, frame_size=320))
        monkeypatch.setattr(
            tracker, "_detect_at",
            lambda frame, roi, scale_adjust: Detection(dx=0.0, dy=0.0, peak_value=0.1, psr=1.0),
        )

        # next frame is smaller, the old region lies outside it
        assert not tracker.update(make_noise_frame(frame_size=160))
        assert tracker.state.region == Rect(158, 158, 32, 32)
        assert tracker.get_region() == Rect(158, 158, 32, 32)

    def test_empty_frame_is_lost(self, raw_options, square_frame, square_region):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        assert not tracker.update(np.zeros((0, 0, 3), dtype=np.uint8))
        assert tracker.status == TrackingStatus.LOST

    def test_occluder_of_different_colour_is_rejected(self, lab_options, monkeypatch):
        x0, y0, size = 60, 60, 32
        tracker = KCFTracker(lab_options)
        assert tracker.init((x0, y0, size, size), make_checker_frame(x0, y0, size))
        region = tracker.get_region()
        template = tracker.correlation_filter.template

        # keep the detector's answer moderate and in place
        correlation_filter = tracker.correlation_filter
        real_detect = correlation_filter.detect

        def moderate_detect(z, x):
            det = real_detect(z, x)
            return dataclasses.replace(det, dx=0.0, dy=0.0, peak_value=0.4)

        monkeypatch.setattr(correlation_filter, "detect", moderate_detect)

        assert not tracker.update(make_occluded_frame(x0, y0, size))
        state = tracker.state
        assert state.status == TrackingStatus.LOST
        assert state.peak_value == pytest.approx(0.4)
        assert state.template_similarity < 0.68
        assert state.histogram_similarity < 0.7
        assert tracker.get_region() == region
        assert tracker.correlation_filter.template is template

    def test_same_moderate_peak_passes_with_matching_colour(self, lab_options, monkeypatch):
        x0, y0, size = 60, 60, 32
        frame = make_checker_frame(x0, y0, size)
        tracker = KCFTracker(lab_options)
        assert tracker.init((x0, y0, size, size), frame)

        correlation_filter = tracker.correlation_filter
        real_detect = correlation_filter.detect
        monkeypatch.setattr(
            correlation_filter, "detect",
            lambda z, x: dataclasses.replace(real_detect(z, x), dx=0.0, dy=0.0, peak_value=0.4),
        )

        assert tracker.update(frame)
        assert tracker.state.histogram_similarity >= 0.7


class TestScaleSearch:
    def test_checks_alternate(self, raw_options, square_frame, square_region):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        assert tracker.scale_check is ScaleCheck.CHECK_LARGER
        assert tracker.update(square_frame)
        assert tracker.scale_check is ScaleCheck.CHECK_SMALLER
        assert tracker.update(square_frame)
        assert tracker.scale_check is ScaleCheck.CHECK_LARGER

    def test_static_target_keeps_scale(self, raw_options, square_frame, square_region):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        initial = tracker.scale
        for _ in range(4):
            assert tracker.update(square_frame)
        assert tracker.scale == pytest.approx(initial)
        assert tracker.get_region().width == pytest.approx(32)

    def test_fixed_window_runs_search(self, hog_options, square_frame, square_region):
        assert not hog_options.multiscale
        assert hog_options.scale_search
        tracker = KCFTracker(hog_options)
        assert tracker.init(square_region, square_frame)
        calls = []
        real_extract = tracker._extractor.extract

        def counting_extract(*args, **kwargs):
            calls.append(args)
            return real_extract(*args, **kwargs)

        tracker._extractor.extract = counting_extract
        assert tracker.update(square_frame)
        # base detection, larger scale, training
        assert len(calls) == 3
        assert tracker.scale_check is ScaleCheck.CHECK_SMALLER


BASE_PEAK = 0.6


def fixed_peaks(alternate_peak):
    """Detector stand-in: BASE_PEAK at the current scale, `alternate_peak` elsewhere."""
    def _detect_at(frame, roi, scale_adjust):
        peak = BASE_PEAK if scale_adjust == 1.0 else alternate_peak
        return Detection(dx=0.0, dy=0.0, peak_value=peak, psr=10.0)
    return _detect_at


class TestAlternateScaleWeights:
    @pytest.mark.parametrize("offset, accepted", [(0.01, True), (-0.01, False)])
    def test_larger_scale(self, raw_options, square_frame, square_region, monkeypatch,
                          offset, accepted):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        initial = tracker.scale
        monkeypatch.setattr(tracker, "_detect_at", fixed_peaks(BASE_PEAK / 0.93 + offset))

        assert tracker.update(square_frame)
        assert tracker.scale_check is ScaleCheck.CHECK_SMALLER
        if accepted:
            assert tracker.scale == pytest.approx(initial * 1.1)
            assert tracker.get_region().width == pytest.approx(32 * 1.1)
            assert tracker.state.peak_value == pytest.approx(BASE_PEAK / 0.93 + offset)
        else:
            assert tracker.scale == pytest.approx(initial)
            assert tracker.get_region().width == pytest.approx(32)
            assert tracker.state.peak_value == pytest.approx(BASE_PEAK)

    @pytest.mark.parametrize("offset, accepted", [(0.01, True), (-0.01, False)])
    def test_smaller_scale(self, raw_options, square_frame, square_region, monkeypatch,
                           offset, accepted):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        initial = tracker.scale

        # first update only looks at the larger scale
        monkeypatch.setattr(tracker, "_detect_at", fixed_peaks(0.3))
        assert tracker.update(square_frame)
        assert tracker.scale == pytest.approx(initial)
        assert tracker.scale_check is ScaleCheck.CHECK_SMALLER

        monkeypatch.setattr(tracker, "_detect_at", fixed_peaks(BASE_PEAK / 0.9 + offset))
        assert tracker.update(square_frame)
        assert tracker.scale_check is ScaleCheck.CHECK_LARGER
        if accepted:
            assert tracker.scale == pytest.approx(initial / 1.1)
            assert tracker.get_region().width == pytest.approx(32 / 1.1)
        else:
            assert tracker.scale == pytest.approx(initial)
            assert tracker.get_region().width == pytest.approx(32)

    def test_weights_do_not_apply_to_base(self, raw_options, square_frame, square_region,
                                          monkeypatch):
        tracker = KCFTracker(raw_options)
        assert tracker.init(square_region, square_frame)
        initial = tracker.scale
        # equal peaks: the weighted alternate always loses
        monkeypatch.setattr(tracker, "_detect_at", fixed_peaks(BASE_PEAK))
        for _ in range(4):
            assert tracker.update(square_frame)
        assert tracker.scale == pytest.approx(initial)
