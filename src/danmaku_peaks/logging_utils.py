#!/usr/bin/env python3
"""Console output for Danmaku Peaks.

Everything here prints; nothing uses the ``logging`` module. Normal
progress goes to stdout, warnings, errors and the end-of-run failure
summary go to stderr so a JSON report on stdout stays clean.
"""
from __future__ import annotations

import sys
from typing import Iterable, Optional, TextIO, Tuple

PROGRESS_WIDTH = 120


def _emit(msg: str, *, stream: Optional[TextIO] = None, prefix: str = "") -> None:
    # sys.stdout is looked up per call
    print(f"{prefix}{msg}", file=stream if stream is not None else sys.stdout, flush=True)


# ============================================================
# Logging
# ============================================================

def log(msg: str, *, quiet: bool = False) -> None:
    """Print `msg` to stdout unless `quiet`."""
    if not quiet:
        _emit(msg)


def warn(msg: str, *, quiet: bool = False) -> None:
    """Print a ``WARNING:`` line to stderr unless `quiet`.

    Used for skipped recordings, clamped settings and retry reports.
    """
    if not quiet:
        _emit(msg, stream=sys.stderr, prefix="WARNING: ")


def die(msg: str, code: int = 1) -> int:
    """Print an ``ERROR:`` line to stderr, even in quiet mode.

    Returns:
        `code`, so callers can ``return die(...)`` from ``main``
    """
    _emit(msg, stream=sys.stderr, prefix="ERROR: ")
    return code


def log_failure_summary(failures: Iterable[Tuple[str, str]], *, quiet: bool = False) -> int:
    """Print one line per skipped recording or input after a run.

    Args:
        failures: (path, reason) pairs in the order they happened
        quiet: If True, print nothing

    Returns:
        Number of failures listed
    """
    failures = list(failures)
    if failures and not quiet:
        _emit("Summary: failures:", stream=sys.stderr, prefix="\n")
        for path, reason in failures:
            _emit(f"{path}: {reason}", stream=sys.stderr, prefix="  - ")
    return len(failures)


# ============================================================
# Batch Progress
# ============================================================

def progress_message(index: int, total: int) -> str:
    """Counter text for recording `index` of `total`, e.g. ``[ 3/10]  30.0%``."""
    width = len(str(total))
    pct = (index / total * 100.0) if total > 0 else 100.0
    return f"[{index:>{width}d}/{total:d}] {pct:5.1f}%"


def progress_line(msg: str, *, enabled: bool, quiet: bool) -> None:
    """Overwrite the current terminal line with `msg` (cut to PROGRESS_WIDTH)."""
    if quiet or not enabled:
        return
    sys.stdout.write("\r" + msg[:PROGRESS_WIDTH].ljust(PROGRESS_WIDTH))
    sys.stdout.flush()


def progress_done(*, enabled: bool, quiet: bool) -> None:
    if quiet or not enabled:
        return
    sys.stdout.write("\n")
    sys.stdout.flush()


# ============================================================
# Formatting
# ============================================================

def format_duration(seconds: float) -> str:
    """Format a stream offset as H:MM:SS, or M:SS under an hour.

    Negative offsets print as 0:00; fractions are dropped.
    """
    minutes, secs = divmod(max(0, int(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:d}:{secs:02d}"


def format_span(start: float, end: float) -> str:
    """Format a peak window as ``start-end`` stream offsets."""
    return f"{format_duration(start)}-{format_duration(end)}"
