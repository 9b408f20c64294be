#!/usr/bin/env python3
"""Danmaku density analysis for Danmaku Peaks.

This module handles:
- Building the overlapping sliding-window table over elapsed time
- Deriving the adaptive detection threshold
- Finding strict local maxima in the window counts
- Turning qualifying windows into ranked Peak records

Everything here is pure: no I/O, no shared state.
"""
from __future__ import annotations

import math
from bisect import bisect_left
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from .models import AnalysisReport, DensityPoint, Message, Peak, Position, WindowSample


# ============================================================
# Defaults
# ============================================================

DEFAULT_WINDOW_SIZE = 30.0
DEFAULT_STEP_SIZE = 5.0
DEFAULT_MIN_THRESHOLD = 3
DEFAULT_DENSITY_MULTIPLIER = 1.5
DEFAULT_MAX_PEAKS = 10

# a local maximum needs a predecessor and a successor
MIN_WINDOWS_FOR_PEAKS = 3


def _check_window_params(window_size: float, step_size: float) -> None:
    if window_size <= 0.0 or not math.isfinite(window_size):
        raise ValueError("window_size must be a positive finite float.")
    if step_size <= 0.0 or not math.isfinite(step_size):
        raise ValueError("step_size must be a positive finite float.")


def sort_messages(messages: Iterable[Message]) -> List[Message]:
    return sorted(messages, key=lambda m: m.elapsed_seconds)


# ============================================================
# Window Table
# ============================================================

def build_windows(messages: Sequence[Message], window_size: float, step_size: float) -> List[WindowSample]:
    """Build the overlapping window table from 0 to the last elapsed time.

    Window i starts at ``i * step_size`` and holds the messages with
    ``start <= elapsed_seconds < start + window_size``. The table has
    ``floor(max_elapsed / step_size) + 1`` entries.

    Args:
        messages: Messages in any order
        window_size: Window length in seconds
        step_size: Distance between consecutive window starts in seconds

    Returns:
        Window samples in start order (empty for no messages)

    Raises:
        ValueError: If window_size or step_size is not positive
    """
    _check_window_params(window_size, step_size)
    ordered = sort_messages(messages)
    if not ordered:
        return []

    times = [m.elapsed_seconds for m in ordered]
    max_time = times[-1]

    samples: List[WindowSample] = []
    i = 0
    start = 0.0
    while start <= max_time:
        lo = bisect_left(times, start)
        hi = bisect_left(times, start + window_size)
        members = tuple(ordered[lo:hi])
        samples.append(WindowSample(window_start=start, count=len(members), member_messages=members))
        i += 1
        start = i * step_size
    return samples


def density_series(samples: Sequence[WindowSample]) -> List[DensityPoint]:
    return [DensityPoint(time=s.window_start, count=s.count) for s in samples]


# ============================================================
# Threshold + Local Maxima
# ============================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def adaptive_threshold(
    samples: Sequence[WindowSample],
    *,
    min_threshold: int = DEFAULT_MIN_THRESHOLD,
    density_multiplier: float = DEFAULT_DENSITY_MULTIPLIER,
) -> int:
    """Threshold a window must reach to count as a peak.

    ``max(min_threshold, round(mean_count * density_multiplier))``, with
    halves rounded up.
    """
    if not samples:
        return min_threshold
    avg = sum(s.count for s in samples) / len(samples)
    return max(min_threshold, _round_half_up(avg * density_multiplier))


def find_local_maxima(counts: Sequence[int], threshold: int) -> List[int]:
    """Indices of interior counts strictly above both neighbours and >= threshold.

    Plateaus never qualify.
    """
    out: List[int] = []
    for i in range(1, len(counts) - 1):
        c = counts[i]
        if c > counts[i - 1] and c > counts[i + 1] and c >= threshold:
            out.append(i)
    return out


# ============================================================
# Peak Construction
# ============================================================

def dominant_position(messages: Sequence[Message]) -> Position:
    """Most common position; ties go to the earlier of SCROLL, TOP, BOTTOM."""
    tally: Dict[Position, int] = {p: 0 for p in Position}
    for m in messages:
        tally[m.position] += 1
    best = Position.SCROLL
    best_count = -1
    for position, count in tally.items():
        if count > best_count:
            best, best_count = position, count
    return best


def average_content_length(messages: Sequence[Message]) -> float:
    if not messages:
        return 0.0
    return sum(len(m.content) for m in messages) / len(messages)


def build_peak(
    sample: WindowSample,
    window_size: float,
    recording_start: Optional[datetime] = None,
) -> Peak:
    """Turn one qualifying window into a Peak.

    The absolute span comes from the first and last member messages. An
    empty window falls back to ``recording_start`` plus the window offset,
    and to the current instant when no recording start is known.
    """
    members = sample.member_messages
    if members:
        start_abs = members[0].absolute_time
        end_abs = members[-1].absolute_time
    elif recording_start is not None:
        start_abs = recording_start + timedelta(seconds=sample.window_start)
        end_abs = recording_start + timedelta(seconds=sample.window_start + window_size)
    else:
        start_abs = end_abs = datetime.now(timezone.utc)

    return Peak(
        start_time=sample.window_start,
        end_time=sample.window_start + window_size,
        start_absolute_time=start_abs,
        end_absolute_time=end_abs,
        count=sample.count,
        average_content_length=average_content_length(members),
        dominant_position=dominant_position(members),
    )


def rank_peaks(peaks: Iterable[Peak], max_peaks: int = DEFAULT_MAX_PEAKS) -> List[Peak]:
    """Sort by count descending (stable on ties) and keep the first `max_peaks`."""
    ranked = sorted(peaks, key=lambda p: p.count, reverse=True)
    return ranked[:max(0, max_peaks)]


# ============================================================
# Entry Points
# ============================================================

def analyze_report(
    messages: Sequence[Message],
    window_size: float = DEFAULT_WINDOW_SIZE,
    step_size: float = DEFAULT_STEP_SIZE,
    recording_start: Optional[datetime] = None,
    *,
    min_threshold: int = DEFAULT_MIN_THRESHOLD,
    density_multiplier: float = DEFAULT_DENSITY_MULTIPLIER,
    max_peaks: int = DEFAULT_MAX_PEAKS,
) -> AnalysisReport:
    """Run the full density analysis and keep the intermediate values.

    Args:
        messages: Messages in any order
        window_size: Window length in seconds
        step_size: Distance between window starts in seconds
        recording_start: Fallback origin for empty-window absolute times
        min_threshold: Floor of the adaptive threshold
        density_multiplier: Factor applied to the mean window count
        max_peaks: Maximum number of peaks returned

    Returns:
        AnalysisReport with ranked peaks and the window statistics
    """
    samples = build_windows(messages, window_size, step_size)
    counts = [s.count for s in samples]
    threshold = adaptive_threshold(
        samples, min_threshold=min_threshold, density_multiplier=density_multiplier
    )
    avg = (sum(counts) / len(counts)) if counts else 0.0

    peaks: List[Peak] = []
    if len(samples) >= MIN_WINDOWS_FOR_PEAKS:
        for i in find_local_maxima(counts, threshold):
            peaks.append(build_peak(samples[i], window_size, recording_start))

    times = [m.elapsed_seconds for m in messages]
    return AnalysisReport(
        peaks=rank_peaks(peaks, max_peaks),
        threshold=threshold,
        average_density=avg,
        window_size=window_size,
        step_size=step_size,
        min_time=min(times) if times else 0.0,
        max_time=max(times) if times else 0.0,
        window_count=len(samples),
        density_series=density_series(samples),
    )


def analyze(
    messages: Sequence[Message],
    window_size: float = DEFAULT_WINDOW_SIZE,
    step_size: float = DEFAULT_STEP_SIZE,
    recording_start: Optional[datetime] = None,
    *,
    min_threshold: int = DEFAULT_MIN_THRESHOLD,
    density_multiplier: float = DEFAULT_DENSITY_MULTIPLIER,
    max_peaks: int = DEFAULT_MAX_PEAKS,
) -> List[Peak]:
    """Ranked density peaks for `messages` (see analyze_report)."""
    return analyze_report(
        messages,
        window_size,
        step_size,
        recording_start,
        min_threshold=min_threshold,
        density_multiplier=density_multiplier,
        max_peaks=max_peaks,
    ).peaks
