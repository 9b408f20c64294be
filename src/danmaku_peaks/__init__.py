"""Danmaku Peaks - find chat-density highlights in live-stream recordings.

This package parses danmaku XML exports and ranks the time windows where
message density spikes.
"""
from .cli import main
from .models import TOOL_VERSION

__version__ = TOOL_VERSION
__all__ = ["main", "__version__"]
