"""Tests for the analysis module."""
import pytest
from datetime import datetime, timedelta, timezone
from danmaku_peaks.analysis import (
    adaptive_threshold,
    analyze,
    analyze_report,
    build_peak,
    build_windows,
    dominant_position,
    find_local_maxima,
    rank_peaks,
)
from danmaku_peaks.models import Message, Peak, Position, WindowSample


BASE = datetime(2025, 8, 13, 20, 0, tzinfo=timezone.utc)


def msg(t, content="hi", position=Position.SCROLL):
    return Message(
        elapsed_seconds=t,
        absolute_time=BASE + timedelta(seconds=t),
        content=content,
        position=position,
    )


def samples(*counts):
    return [WindowSample(window_start=i * 5.0, count=c) for i, c in enumerate(counts)]


def peak(start, count):
    return Peak(
        start_time=start,
        end_time=start + 30.0,
        start_absolute_time=BASE,
        end_absolute_time=BASE,
        count=count,
        average_content_length=0.0,
        dominant_position=Position.SCROLL,
    )


def burst_recording():
    """One message every 30s from 0 to 270, plus a ten-message burst spanning 100..125."""
    baseline = [msg(float(t)) for t in range(0, 300, 30)]
    burst_times = [100, 103, 106, 109, 112, 115, 118, 121, 124, 125]
    burst = [msg(float(t), content="burst!", position=Position.TOP) for t in burst_times]
    return baseline + burst


class TestBuildWindows:
    """Tests for build_windows function."""

    def test_empty_messages(self):
        assert build_windows([], 30.0, 5.0) == []

    def test_window_count(self):
        """Test floor(max / step) + 1 windows starting at zero."""
        windows = build_windows([msg(0.0), msg(12.0)], 30.0, 5.0)

        assert [w.window_start for w in windows] == [0.0, 5.0, 10.0]

    def test_half_open_interval(self):
        """Test that the window end is exclusive."""
        windows = build_windows([msg(0.0), msg(30.0)], 30.0, 30.0)

        assert [w.count for w in windows] == [1, 1]

    def test_overlapping_membership(self):
        """Test that one message belongs to every window covering it."""
        windows = build_windows([msg(10.0), msg(20.0)], 30.0, 5.0)

        assert [w.count for w in windows] == [2, 2, 2, 1, 1]
        assert [m.elapsed_seconds for m in windows[0].member_messages] == [10.0, 20.0]

    def test_unsorted_input(self):
        """Test that membership does not depend on input order."""
        forward = build_windows([msg(1.0), msg(7.0), msg(14.0)], 10.0, 5.0)
        backward = build_windows([msg(14.0), msg(7.0), msg(1.0)], 10.0, 5.0)
        assert forward == backward

    @pytest.mark.parametrize("window_size,step_size", [(0.0, 5.0), (30.0, 0.0), (-1.0, 5.0), (30.0, -5.0)])
    def test_invalid_parameters(self, window_size, step_size):
        """Test that non-positive sizes are rejected."""
        with pytest.raises(ValueError):
            build_windows([msg(1.0)], window_size, step_size)


class TestAdaptiveThreshold:
    """Tests for adaptive_threshold function."""

    def test_floor_applies(self):
        """Test that the minimum threshold wins over a low mean."""
        assert adaptive_threshold(samples(1, 1, 1)) == 3

    def test_multiplier_applies(self):
        """Test mean times multiplier when above the floor."""
        assert adaptive_threshold(samples(4, 4, 4, 4)) == 6

    def test_half_rounds_up(self):
        """Test that x.5 rounds up."""
        assert adaptive_threshold(samples(3, 3)) == 5

    def test_custom_parameters(self):
        assert adaptive_threshold(samples(1, 1, 1), min_threshold=1, density_multiplier=1.0) == 1

    def test_no_samples(self):
        assert adaptive_threshold([], min_threshold=4) == 4


class TestFindLocalMaxima:
    """Tests for find_local_maxima function."""

    def test_single_peak(self):
        assert find_local_maxima([1, 3, 1], 3) == [1]

    def test_below_threshold(self):
        assert find_local_maxima([1, 3, 1], 4) == []

    def test_plateau_never_qualifies(self):
        """Test that equal neighbours block a maximum."""
        assert find_local_maxima([1, 5, 5, 1], 1) == []

    def test_edges_excluded(self):
        """Test that the first and last windows are never peaks."""
        assert find_local_maxima([9, 1, 9], 1) == []

    def test_multiple_peaks(self):
        assert find_local_maxima([0, 4, 1, 6, 2, 5, 0], 4) == [1, 3, 5]


class TestDominantPosition:
    """Tests for dominant_position function."""

    def test_majority(self):
        messages = [msg(0, position=Position.BOTTOM), msg(1, position=Position.BOTTOM), msg(2)]
        assert dominant_position(messages) == Position.BOTTOM

    def test_tie_prefers_scroll(self):
        """Test that scroll wins ties against top."""
        messages = [msg(0, position=Position.TOP), msg(1, position=Position.SCROLL)]
        assert dominant_position(messages) == Position.SCROLL

    def test_tie_prefers_top_over_bottom(self):
        messages = [msg(0, position=Position.BOTTOM), msg(1, position=Position.TOP)]
        assert dominant_position(messages) == Position.TOP

    def test_empty(self):
        assert dominant_position([]) == Position.SCROLL


class TestBuildPeak:
    """Tests for build_peak function."""

    def test_peak_from_members(self):
        """Test absolute span and statistics from member messages."""
        members = (msg(10.0, "ab"), msg(12.0, "abcd", Position.TOP), msg(20.0, "abcdef", Position.TOP))
        p = build_peak(WindowSample(window_start=10.0, count=3, member_messages=members), 30.0)

        assert p.start_time == 10.0
        assert p.end_time == 40.0
        assert p.start_absolute_time == BASE + timedelta(seconds=10)
        assert p.end_absolute_time == BASE + timedelta(seconds=20)
        assert p.count == 3
        assert p.average_content_length == 4.0
        assert p.dominant_position == Position.TOP

    def test_empty_window_uses_recording_start(self):
        """Test the recording-start fallback for an empty window."""
        p = build_peak(WindowSample(window_start=10.0, count=0), 30.0, recording_start=BASE)

        assert p.start_absolute_time == BASE + timedelta(seconds=10)
        assert p.end_absolute_time == BASE + timedelta(seconds=40)
        assert p.average_content_length == 0.0
        assert p.dominant_position == Position.SCROLL

    def test_empty_window_without_start(self):
        """Test that the current instant is used when nothing else is known."""
        before = datetime.now(timezone.utc)
        p = build_peak(WindowSample(window_start=10.0, count=0), 30.0)
        after = datetime.now(timezone.utc)

        assert before <= p.start_absolute_time <= after
        assert p.start_absolute_time == p.end_absolute_time


class TestRankPeaks:
    """Tests for rank_peaks function."""

    def test_sorted_by_count(self):
        ranked = rank_peaks([peak(0, 5), peak(10, 9), peak(20, 7)])
        assert [p.count for p in ranked] == [9, 7, 5]

    def test_ties_keep_time_order(self):
        """Test that equal counts keep their original order."""
        ranked = rank_peaks([peak(50, 5), peak(10, 8), peak(90, 5)])
        assert [p.start_time for p in ranked] == [10, 50, 90]

    def test_truncation(self):
        ranked = rank_peaks([peak(i * 10, i) for i in range(1, 15)], max_peaks=3)
        assert [p.count for p in ranked] == [14, 13, 12]

    def test_zero_max_peaks(self):
        assert rank_peaks([peak(0, 5)], max_peaks=0) == []


class TestAnalyze:
    """Tests for analyze and analyze_report functions."""

    def test_empty_input(self):
        assert analyze([]) == []

    def test_fewer_than_three_windows(self):
        """Test that two windows can never hold a local maximum."""
        messages = [msg(0.0)] + [msg(5.0)] * 10
        assert analyze(messages, 30.0, 5.0) == []

    def test_uniform_density_has_no_peaks(self):
        """Test that a flat series produces nothing."""
        messages = [msg(float(t)) for t in range(0, 600, 30)]
        assert analyze(messages, 30.0, 5.0) == []

    def test_single_burst(self):
        """Test that one burst over a flat baseline yields exactly one peak."""
        messages = burst_recording()
        assert len(messages) == 20

        peaks = analyze(messages, 30.0, 5.0)

        assert len(peaks) == 1
        p = peaks[0]
        assert p.start_time == 100.0
        assert p.end_time == 130.0
        assert p.count == 11
        assert p.start_time <= 100.0 and p.end_time > 125.0
        assert p.start_absolute_time == BASE + timedelta(seconds=100)
        assert p.end_absolute_time == BASE + timedelta(seconds=125)
        assert p.dominant_position == Position.TOP
        assert p.average_content_length == pytest.approx((10 * 6 + 2) / 11)

    def test_burst_order_independent(self):
        """Test that shuffled input gives the same peaks."""
        messages = burst_recording()
        assert analyze(list(reversed(messages))) == analyze(messages)

    def test_report_values(self):
        """Test the intermediate values kept by analyze_report."""
        report = analyze_report(burst_recording(), 30.0, 5.0)

        assert report.window_count == 55
        assert report.threshold == 3
        assert report.average_density == pytest.approx(115 / 55)
        assert report.min_time == 0.0
        assert report.max_time == 270.0
        assert len(report.density_series) == 55
        assert max(p.count for p in report.density_series) == 11

    def test_peaks_bounded(self):
        """Test that peak count and threshold invariants hold."""
        messages = []
        for start in (60, 200, 340, 480):
            messages.extend(msg(float(start + i)) for i in range(8))
        messages.extend(msg(float(t)) for t in range(0, 600, 45))

        report = analyze_report(messages, 30.0, 5.0, max_peaks=2)

        assert len(report.peaks) <= 2
        for p in report.peaks:
            assert p.count >= report.threshold
            assert p.end_time - p.start_time == 30.0
        counts = [p.count for p in report.peaks]
        assert counts == sorted(counts, reverse=True)

    def test_invalid_step(self):
        with pytest.raises(ValueError):
            analyze([msg(1.0)], 30.0, 0.0)
