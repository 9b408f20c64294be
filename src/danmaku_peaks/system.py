#!/usr/bin/env python3
"""System utilities for Danmaku Peaks.

This module provides:
- File system helpers for report output
- Environment diagnostics for bug reports
"""
from __future__ import annotations

import platform
import sys
import xml.parsers.expat
from pathlib import Path

from .models import TOOL_VERSION


# ============================================================
# File System Utilities
# ============================================================

def ensure_parent_dir(path: Path) -> None:
    """Ensure that a file's parent directory exists, creating it if needed.

    Args:
        path: Path to a file whose parent directory should exist
    """
    parent = path.parent
    if parent and not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)


# ============================================================
# Diagnostics
# ============================================================

def diagnose() -> None:
    """Print tool, interpreter, platform and XML parser versions to stdout."""
    print(f"tool_version: {TOOL_VERSION}")
    print(f"python: {sys.version.split()[0]}")
    print(f"platform: {platform.platform()}")
    print(f"expat: {xml.parsers.expat.EXPAT_VERSION}")
