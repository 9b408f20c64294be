#!/usr/bin/env python3
"""Batch processing utilities for Danmaku Peaks.

This module handles:
- Command-line input expansion (files, directories, glob patterns)
- Danmaku file discovery inside a file source
- Parsing a batch of files, skipping failures while tracking progress
"""
from __future__ import annotations

import glob
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from .danmaku_parser import looks_like_danmaku, parse_danmaku_xml
from .errors import DanmakuPeaksError, NotDanmakuFile, OperationCancelled
from .models import ParsedRecording
from .sources import FileSource


# ============================================================
# Input Expansion
# ============================================================

DANMAKU_EXTS = {".xml"}


def expand_inputs(inputs: List[str]) -> List[Path]:
    """Expand command-line inputs into existing files and directories.

    Glob patterns are expanded; other inputs are kept as given.
    Duplicates are removed, order preserved.

    Args:
        inputs: File, directory or glob patterns

    Returns:
        Deduplicated list of Path objects
    """
    out: List[Path] = []
    for s in inputs:
        p = Path(s)
        if any(ch in s for ch in ["*", "?", "["]) and not p.exists():
            out.extend(sorted(Path(x) for x in glob.glob(s)))
        else:
            out.append(p)

    # de-dupe, preserve order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve()) if p.exists() else str(p)
        if rp in seen:
            continue
        seen.add(rp)
        uniq.append(p)
    return uniq


# ============================================================
# Discovery
# ============================================================

def is_danmaku_name(name: str) -> bool:
    return Path(name).suffix.lower() in DANMAKU_EXTS


def iter_danmaku_files(source: FileSource, path: str = "") -> Iterator[str]:
    """Depth-first walk of `source` yielding danmaku file paths.

    Args:
        source: File source to walk
        path: Directory to start from ("" for the source root)

    Yields:
        Paths of files with a danmaku extension
    """
    for entry in source.list_entries(path):
        if entry.is_dir:
            yield from iter_danmaku_files(source, entry.path)
        elif is_danmaku_name(entry.name):
            yield entry.path


# ============================================================
# Batch Parsing
# ============================================================

@dataclass(frozen=True)
class BatchFailure:
    path: str
    reason: str


@dataclass
class BatchResult:
    recordings: List[ParsedRecording] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)


def load_recording(data: bytes, path: str) -> ParsedRecording:
    """Pre-check and parse one file's bytes.

    Raises:
        NotDanmakuFile: If the bytes carry no danmaku marker
        MalformedDocument: If the XML cannot be tokenized
    """
    if not looks_like_danmaku(data):
        raise NotDanmakuFile(f"Not a danmaku file: {path}")
    return parse_danmaku_xml(data, path)


def parse_batch(
    source: FileSource,
    paths: Iterable[str],
    *,
    progress: Optional[Callable[[int, int], None]] = None,
) -> BatchResult:
    """Parse several files; a failing file is recorded and skipped.

    Package errors and plain ``OSError``s from the source count as per-file
    failures. ``OperationCancelled`` ends the batch.

    Args:
        source: File source to read from
        paths: Paths to parse
        progress: Called with (index, total) before each file and once at the end

    Returns:
        BatchResult with parsed recordings and per-file failures
    """
    todo = list(paths)
    total = len(todo)
    result = BatchResult()

    for index, path in enumerate(todo):
        if progress is not None:
            progress(index, total)
        try:
            result.recordings.append(load_recording(source.read_bytes(path), path))
        except OperationCancelled:
            raise
        except (DanmakuPeaksError, OSError) as e:
            result.failures.append(BatchFailure(path, str(e) or type(e).__name__))

    if progress is not None:
        progress(total, total)
    return result
