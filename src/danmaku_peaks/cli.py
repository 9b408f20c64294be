#!/usr/bin/env python3
"""Command-line interface for Danmaku Peaks.

This is the main entry point for the danmaku-peaks command-line tool.
"""
from __future__ import annotations

import argparse
import dataclasses
import functools
import json
import traceback
from pathlib import Path
from typing import List, Optional, Tuple

from .batch import BatchFailure, expand_inputs
from .config import MODE_ALIASES, PRESETS, apply_overrides, clamp_analysis_config, load_config_file
from .errors import DanmakuPeaksError
from .logging_utils import die, log, log_failure_summary, progress_done, progress_line, progress_message, warn
from .models import TOOL_VERSION, AnalysisConfig
from .output_writers import render_json_report, render_txt_report, write_json_report, write_txt_report
from .pipeline import (
    RecordingAnalysis,
    ResilientFileSource,
    ScanReport,
    analyze_paths,
    breaker_from_config,
    scan_and_analyze,
)
from .resilience import CircuitBreaker, RetryExecutor, log_attempt
from .sources import LocalFileSource
from .system import diagnose


# ============================================================
# Run one input
# ============================================================

def run_one(
    *,
    input_path: Path,
    cfg: AnalysisConfig,
    breaker: CircuitBreaker,
    quiet: bool,
    show_progress: bool,
) -> ScanReport:
    """Scan a directory, or analyze a single file, and return the report.

    Args:
        input_path: Directory of recordings or one danmaku XML file
        cfg: Resolved configuration
        breaker: Circuit breaker shared by all inputs of this run
        quiet: Suppress non-error output
        show_progress: Show the batch progress counter

    Returns:
        ScanReport for this input
    """
    reporter = functools.partial(log_attempt, quiet=quiet)

    def progress(index: int, total: int) -> None:
        progress_line(f"   {progress_message(index, total)}  {input_path}", enabled=show_progress, quiet=quiet)

    log(f"Input: {input_path}", quiet=quiet)
    if input_path.is_dir():
        report = scan_and_analyze(
            LocalFileSource(input_path),
            cfg,
            progress=progress,
            reporter=reporter,
            breaker=breaker,
        )
    else:
        # keep the full path so channel and date folders feed the metadata
        source = ResilientFileSource(
            LocalFileSource(Path.cwd()),
            RetryExecutor(cfg.retry_policy(), reporter),
            breaker,
        )
        report = analyze_paths(source, [str(input_path)], cfg, progress=progress)
    progress_done(enabled=show_progress, quiet=quiet)

    log(f"   {len(report.results)} recording(s) analyzed, {len(report.failures)} skipped", quiet=quiet)
    return report


# ============================================================
# CLI
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the danmaku-peaks command-line tool.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    ap = argparse.ArgumentParser(description="Find danmaku density peaks in live-stream recordings")
    ap.add_argument("inputs", nargs="*", help="Danmaku XML file(s), recording directories, or glob pattern(s)")
    ap.add_argument("-o", "--output", default=None, help="Write the report to this path instead of stdout.")
    ap.add_argument("--format", choices=["txt", "json"], default="txt", help="Report format")

    ap.add_argument("--mode", default=None, help="Preset modes: fine | default | coarse (aliases: short, normal, long).")
    ap.add_argument("--config", default=None, help="JSON config file. CLI args override config.")

    ap.add_argument("--window", type=float, default=None, help="Window size in seconds.")
    ap.add_argument("--step", type=float, default=None, help="Step between window starts in seconds.")
    ap.add_argument("--min-threshold", type=int, default=None, help="Minimum messages per window for a peak.")
    ap.add_argument("--multiplier", type=float, default=None, help="Threshold multiplier applied to the mean density.")
    ap.add_argument("--max-peaks", type=int, default=None, help="Maximum number of peaks per recording.")
    ap.add_argument("--retries", type=int, default=None, help="Read attempts per file (including the first).")

    ap.add_argument("--quiet", action="store_true")
    ap.add_argument("--no-progress", action="store_true")
    ap.add_argument("--debug", action="store_true")
    ap.add_argument("--version", action="store_true")
    ap.add_argument("--diagnose", action="store_true")

    args = ap.parse_args(argv)

    if args.version:
        print(TOOL_VERSION)
        return 0

    if args.diagnose:
        diagnose()
        return 0

    quiet = args.quiet
    show_progress = not args.no_progress

    if args.mode:
        mode_key = args.mode.lower()
        if mode_key not in MODE_ALIASES:
            return die(
                f"Invalid --mode '{args.mode}'. "
                f"Valid modes: fine, default, coarse",
                code=2,
            )
        args.mode = MODE_ALIASES[mode_key]

    if not args.inputs:
        return die("No inputs provided.", 2)
    inputs = [p for p in expand_inputs(args.inputs) if p.exists()]
    if not inputs:
        return die("No inputs found after expansion.", 2)

    # Build config: defaults -> config file -> preset -> CLI overrides
    cfg = AnalysisConfig()

    try:
        cfg_file = load_config_file(args.config)
    except Exception as e:
        return die(str(e), 2)

    cfg = apply_overrides(cfg, cfg_file)

    if args.mode:
        cfg = apply_overrides(cfg, PRESETS[args.mode])

    if args.window is not None:
        cfg.window_size = float(args.window)
    if args.step is not None:
        cfg.step_size = float(args.step)
    if args.min_threshold is not None:
        cfg.min_threshold = args.min_threshold
    if args.multiplier is not None:
        cfg.density_multiplier = float(args.multiplier)
    if args.max_peaks is not None:
        cfg.max_peaks = args.max_peaks
    if args.retries is not None:
        cfg.retry_max_attempts = max(1, args.retries)

    clamped = clamp_analysis_config(cfg)
    if clamped != cfg:
        warn("Window/step/threshold settings were clamped to supported ranges.", quiet=quiet)
    cfg = clamped

    if args.debug and not quiet:
        log("Resolved config:", quiet=quiet)
        log(json.dumps(dataclasses.asdict(cfg), indent=2), quiet=quiet)

    breaker = breaker_from_config(cfg)
    analyses: List[RecordingAnalysis] = []
    failures: List[Tuple[str, str]] = []
    skipped: List[BatchFailure] = []
    for input_path in inputs:
        try:
            report = run_one(
                input_path=input_path,
                cfg=cfg,
                breaker=breaker,
                quiet=quiet,
                show_progress=show_progress,
            )
        except KeyboardInterrupt:
            return die("Interrupted by user.", 130)
        except DanmakuPeaksError as e:
            if args.debug:
                traceback.print_exc()
            failures.append((str(input_path), str(e)))
            warn(f"{input_path}: {e}", quiet=quiet)
            continue
        analyses.extend(report.results)
        skipped.extend(report.failures)
        for f in report.failures:
            failures.append((f.path, f.reason))

    if args.output:
        out_path = Path(args.output)
        if args.format == "json":
            write_json_report(analyses, out_path, cfg=cfg, failures=skipped)
        else:
            write_txt_report(analyses, out_path)
        log(f"Done: {out_path}", quiet=quiet)
    elif args.format == "json":
        print(render_json_report(analyses, cfg=cfg, failures=skipped), end="")
    else:
        print(render_txt_report(analyses), end="")

    return 1 if log_failure_summary(failures, quiet=quiet) else 0


if __name__ == "__main__":
    raise SystemExit(main())
