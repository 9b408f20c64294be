#!/usr/bin/env python3
"""Scan-and-analyze entry point for Danmaku Peaks.

An external scheduler (cron, a service loop, the CLI) calls
``scan_and_analyze`` with a file source; there is no timer in here.
Reads go through the retry executor and circuit breaker; parsing and
analysis run directly on the bytes.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, NamedTuple, Optional

from .analysis import analyze
from .batch import BatchFailure, iter_danmaku_files, parse_batch
from .models import AnalysisConfig, ParsedRecording, Peak
from .resilience import AttemptEvent, CircuitBreaker, RetryExecutor, log_attempt
from .sources import Entry, FileSource


class RecordingAnalysis(NamedTuple):
    recording: ParsedRecording
    peaks: List[Peak]


@dataclass
class ScanReport:
    """Outcome of one scan: analyses in discovery order plus skipped files."""
    results: List[RecordingAnalysis] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.results) + len(self.failures)


# ============================================================
# Resilient Source
# ============================================================

class ResilientFileSource:
    """FileSource wrapper that runs every call through a breaker and retries."""

    def __init__(self, source: FileSource, retry: RetryExecutor, breaker: CircuitBreaker):
        self.source = source
        self.retry = retry
        self.breaker = breaker

    def list_entries(self, path: str) -> List[Entry]:
        return self.retry.execute(
            lambda: self.breaker.execute(lambda: self.source.list_entries(path)),
            context=f"list {path or '.'}",
        )

    def read_bytes(self, path: str) -> bytes:
        return self.retry.execute(
            lambda: self.breaker.execute(lambda: self.source.read_bytes(path)),
            context=f"read {path}",
        )


def breaker_from_config(cfg: AnalysisConfig) -> CircuitBreaker:
    return CircuitBreaker(
        failure_threshold=cfg.breaker_failure_threshold,
        reset_timeout=cfg.breaker_reset_timeout,
    )


# ============================================================
# Analysis
# ============================================================

def estimate_recording_start(recording: ParsedRecording) -> Optional[datetime]:
    """Absolute start of the recording, from its earliest message."""
    if not recording.messages:
        return None
    first = recording.messages[0]
    return first.absolute_time - timedelta(seconds=first.elapsed_seconds)


def analyze_recording(recording: ParsedRecording, cfg: AnalysisConfig) -> RecordingAnalysis:
    peaks = analyze(
        recording.messages,
        cfg.window_size,
        cfg.step_size,
        estimate_recording_start(recording),
        min_threshold=cfg.min_threshold,
        density_multiplier=cfg.density_multiplier,
        max_peaks=cfg.max_peaks,
    )
    return RecordingAnalysis(recording, peaks)


def analyze_paths(
    source: FileSource,
    paths: Iterable[str],
    cfg: Optional[AnalysisConfig] = None,
    *,
    progress: Optional[Callable[[int, int], None]] = None,
    store: Optional[Callable[[RecordingAnalysis], None]] = None,
) -> ScanReport:
    """Parse and analyze the given paths of `source`.

    Args:
        source: File source (wrap it in ResilientFileSource for flaky storage)
        paths: Paths to process
        cfg: Analysis configuration (defaults if None)
        progress: Batch progress callback (index, total)
        store: Receives each successful analysis

    Returns:
        ScanReport with analyses and per-file failures
    """
    cfg = cfg if cfg is not None else AnalysisConfig()
    batch = parse_batch(source, paths, progress=progress)

    report = ScanReport(failures=list(batch.failures))
    for recording in batch.recordings:
        analysis = analyze_recording(recording, cfg)
        if store is not None:
            store(analysis)
        report.results.append(analysis)
    return report


def scan_and_analyze(
    source: FileSource,
    cfg: Optional[AnalysisConfig] = None,
    *,
    root: str = "",
    progress: Optional[Callable[[int, int], None]] = None,
    store: Optional[Callable[[RecordingAnalysis], None]] = None,
    reporter: Optional[Callable[[AttemptEvent], None]] = log_attempt,
    breaker: Optional[CircuitBreaker] = None,
    sleep: Optional[Callable[[float], None]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ScanReport:
    """Find every danmaku file under `root`, parse it and rank its peaks.

    Files that fail (unreadable, not danmaku, malformed, circuit open,
    retries exhausted) are recorded in the report and skipped. A failure
    to list the tree itself propagates so the caller can defer the scan.

    Args:
        source: File source holding the recordings
        cfg: Analysis and resilience configuration (defaults if None)
        root: Directory inside the source to scan
        progress: Batch progress callback (index, total)
        store: Receives each successful analysis
        reporter: Receives every retry attempt outcome
        breaker: Circuit breaker to share across scans (new one if None)
        sleep: Replacement for time.sleep between retries
        cancel_event: Set to abort pending retries

    Returns:
        ScanReport for this scan
    """
    cfg = cfg if cfg is not None else AnalysisConfig()
    retry = RetryExecutor(cfg.retry_policy(), reporter, sleep=sleep, cancel_event=cancel_event)
    resilient = ResilientFileSource(
        source,
        retry,
        breaker if breaker is not None else breaker_from_config(cfg),
    )

    paths = list(iter_danmaku_files(resilient, root))
    return analyze_paths(resilient, paths, cfg, progress=progress, store=store)
