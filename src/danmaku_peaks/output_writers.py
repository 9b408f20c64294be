#!/usr/bin/env python3
"""Report writers for Danmaku Peaks.

This module turns analysis results into:
- JSON (recordings, metadata and peaks, machine readable)
- TXT (ranked peak list per recording)

Writing is the caller's choice of store; the analysis core never
persists anything itself.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .logging_utils import format_span
from .models import TOOL_VERSION, AnalysisConfig, Peak, RecordingMetadata
from .pipeline import RecordingAnalysis
from .system import ensure_parent_dir


# ============================================================
# Atomic File Writing
# ============================================================

def atomic_write_text(path: Path, content: str) -> None:
    """Write text to a file atomically using a temporary file.

    Args:
        path: Destination file path
        content: Text content to write
    """
    ensure_parent_dir(path)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


# ============================================================
# JSON Conversion
# ============================================================

def peak_to_jsonable(peak: Peak) -> Dict[str, Any]:
    return {
        "start_time": round(peak.start_time, 3),
        "end_time": round(peak.end_time, 3),
        "start_absolute_time": peak.start_absolute_time.isoformat(),
        "end_absolute_time": peak.end_absolute_time.isoformat(),
        "count": peak.count,
        "average_content_length": round(peak.average_content_length, 3),
        "dominant_position": peak.dominant_position.value,
    }


def metadata_to_jsonable(metadata: RecordingMetadata) -> Dict[str, Any]:
    return {
        "title": metadata.title,
        "channel": metadata.channel,
        "recording_date": metadata.recording_date.isoformat() if metadata.recording_date else None,
        "declared_duration": metadata.declared_duration,
        "chat_server": metadata.chat_server,
    }


def analysis_to_jsonable(analysis: RecordingAnalysis) -> Dict[str, Any]:
    """Convert one recording's analysis to JSON-serializable form."""
    recording, peaks = analysis
    return {
        "source": recording.source,
        "recording_id": recording.recording_id,
        "metadata": metadata_to_jsonable(recording.metadata),
        "total_count": recording.total_count,
        "duration": recording.duration,
        "messages_per_minute": round(recording.messages_per_minute, 3),
        "parse_instant": recording.parse_instant.isoformat(),
        "peaks": [peak_to_jsonable(p) for p in peaks],
    }


# ============================================================
# Report Writers
# ============================================================

def render_json_report(
    analyses: Sequence[RecordingAnalysis],
    *,
    cfg: AnalysisConfig,
    failures: Sequence[Any] = (),
) -> str:
    """Render all analyses, the config used, and skipped files as one JSON document.

    Args:
        analyses: Analyses to include
        cfg: Configuration the analyses ran with
        failures: Skipped files (objects with ``path`` and ``reason``)

    Returns:
        Indented JSON text ending with a newline
    """
    payload = {
        "tool": {"name": "danmaku-peaks", "version": TOOL_VERSION},
        "config": {
            "window_size": cfg.window_size,
            "step_size": cfg.step_size,
            "min_threshold": cfg.min_threshold,
            "density_multiplier": cfg.density_multiplier,
            "max_peaks": cfg.max_peaks,
        },
        "recordings": [analysis_to_jsonable(a) for a in analyses],
        "failures": [{"path": f.path, "reason": f.reason} for f in failures],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"


def write_json_report(
    analyses: Sequence[RecordingAnalysis],
    out_path: Path,
    *,
    cfg: AnalysisConfig,
    failures: Sequence[Any] = (),
) -> None:
    """Write the JSON report (see render_json_report) to `out_path`."""
    atomic_write_text(out_path, render_json_report(analyses, cfg=cfg, failures=failures))


def format_peak_line(rank: int, peak: Peak) -> str:
    return (
        f"{rank:2d}. {format_span(peak.start_time, peak.end_time)}"
        f"  count={peak.count}"
        f"  avg_len={peak.average_content_length:.1f}"
        f"  position={peak.dominant_position.value}"
        f"  at {peak.start_absolute_time.isoformat()}"
    )


def render_txt_report(analyses: Sequence[RecordingAnalysis]) -> str:
    chunks: List[str] = []
    for recording, peaks in analyses:
        lines = [
            f"{recording.metadata.display_name} ({recording.source})",
            f"   messages: {recording.total_count}  peaks: {len(peaks)}",
        ]
        lines.extend("   " + format_peak_line(i, p) for i, p in enumerate(peaks, start=1))
        chunks.append("\n".join(lines))
    return "\n\n".join(chunks) + "\n" if chunks else ""


def write_txt_report(analyses: Sequence[RecordingAnalysis], out_path: Path) -> None:
    """Write the ranked peak list of every recording as plain text."""
    atomic_write_text(out_path, render_txt_report(analyses))
