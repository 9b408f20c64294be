#!/usr/bin/env python3
"""Configuration management for Danmaku Peaks.

This module handles analysis presets, JSON configuration loading,
configuration overrides, and clamping values into supported ranges.
"""
from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any, Dict, Optional

from .models import AnalysisConfig


# ============================================================
# Presets
# ============================================================

PRESETS: Dict[str, Dict[str, Any]] = {
    "fine": {
        "window_size": 15.0,
        "step_size": 2.0,
        "min_threshold": 3,
        "density_multiplier": 1.5,
    },
    "default": {
        "window_size": 30.0,
        "step_size": 5.0,
        "min_threshold": 3,
        "density_multiplier": 1.5,
    },
    "coarse": {
        "window_size": 60.0,
        "step_size": 10.0,
        "min_threshold": 5,
        "density_multiplier": 1.5,
    },
}

MODE_ALIASES = {
    "fine": "fine",
    "short": "fine",
    "default": "default",
    "normal": "default",
    "coarse": "coarse",
    "long": "coarse",
}


# ============================================================
# Supported Ranges
# ============================================================

WINDOW_SIZE_RANGE = (10.0, 120.0)
STEP_SIZE_RANGE = (1.0, 30.0)
MIN_THRESHOLD_RANGE = (1, 20)


def _clamp(value, bounds):
    lo, hi = bounds
    return max(lo, min(hi, value))


def clamp_analysis_config(cfg: AnalysisConfig) -> AnalysisConfig:
    """Clamp window, step and threshold settings into their supported ranges.

    Args:
        cfg: Configuration to clamp

    Returns:
        New AnalysisConfig with clamped values (other fields untouched)
    """
    return dataclasses.replace(
        cfg,
        window_size=float(_clamp(cfg.window_size, WINDOW_SIZE_RANGE)),
        step_size=float(_clamp(cfg.step_size, STEP_SIZE_RANGE)),
        min_threshold=int(_clamp(cfg.min_threshold, MIN_THRESHOLD_RANGE)),
    )


# ============================================================
# Configuration Loading
# ============================================================

def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Load configuration from a JSON file.

    Args:
        path: Path to JSON config file, or None to skip loading

    Returns:
        Dictionary of configuration values, or empty dict if path is None

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file isn't a valid JSON object
    """
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Config must be a JSON object at top-level.")
    return data


def apply_overrides(base: AnalysisConfig, overrides: Dict[str, Any]) -> AnalysisConfig:
    """Apply configuration overrides to a base configuration.

    Unknown keys are ignored.

    Args:
        base: Base AnalysisConfig instance
        overrides: Dictionary of configuration values to override

    Returns:
        New AnalysisConfig instance with overrides applied
    """
    d = dataclasses.asdict(base)
    for k, v in overrides.items():
        if k in d:
            d[k] = v
    return AnalysisConfig(**d)
