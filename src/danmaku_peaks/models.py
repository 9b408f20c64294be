#!/usr/bin/env python3
"""Data models for Danmaku Peaks.

This module contains all data classes used throughout the application:
- TOOL_VERSION: Version constant
- AnalysisConfig: Window, threshold and resilience settings
- Position: Display position of a danmaku message
- Message / RecordingMetadata / ParsedRecording: Parser output
- WindowSample / DensityPoint / Peak / AnalysisReport: Analyzer output
- RetryPolicy / CircuitState: Resilience configuration and state
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import PurePath
from typing import List, Optional, Tuple


# ============================================================
# Versioning
# ============================================================

TOOL_VERSION = "0.2.0"


# ============================================================
# Configuration
# ============================================================

@dataclass
class AnalysisConfig:
    """Resolved configuration for scanning and peak analysis.

    Plain values only; loading and persisting them is the caller's job.
    """
    # sliding window
    window_size: float = 30.0
    step_size: float = 5.0

    # adaptive threshold
    min_threshold: int = 3
    density_multiplier: float = 1.5

    # ranking
    max_peaks: int = 10

    # retry between read attempts
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_multiplier: float = 2.0

    # circuit breaker around the file source
    breaker_failure_threshold: int = 5
    breaker_reset_timeout: float = 60.0

    def retry_policy(self) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
        )


# ============================================================
# Parsed Messages
# ============================================================

class Position(enum.Enum):
    """Where a danmaku message is drawn.

    Declaration order is also the tie-break order for dominant positions.
    """
    SCROLL = "scroll"
    TOP = "top"
    BOTTOM = "bottom"

    @classmethod
    def from_mode(cls, mode: int) -> "Position":
        """Map a numeric mode code to a position (4 bottom, 5 top, else scroll)."""
        if mode == 4:
            return cls.BOTTOM
        if mode == 5:
            return cls.TOP
        return cls.SCROLL


@dataclass(frozen=True)
class Message:
    """A single chat-overlay event.

    Attributes:
        elapsed_seconds: Seconds since the recording started (never negative)
        absolute_time: Wall-clock instant the message was sent (UTC)
        user_id: Sender id hash, if the export carries one
        content: Message text, empty when the element had no text
        color: Raw encoded color value
        font_size: Font size, if parseable
        position: Display position derived from the mode code
    """
    elapsed_seconds: float
    absolute_time: datetime
    user_id: Optional[str] = None
    content: str = ""
    color: Optional[str] = None
    font_size: Optional[int] = None
    position: Position = Position.SCROLL


@dataclass
class RecordingMetadata:
    """Recording information gathered from the path and the document.

    Later sources overwrite earlier ones field by field.
    """
    title: str = ""
    channel: str = ""
    recording_date: Optional[date] = None
    declared_duration: float = 0.0
    chat_server: str = ""

    @property
    def display_name(self) -> str:
        channel = self.channel or "Unknown channel"
        title = self.title or "Unknown title"
        return f"{channel} - {title}"


@dataclass(frozen=True)
class ParsedRecording:
    """Result of parsing one danmaku XML document.

    Attributes:
        metadata: Recording metadata (path-derived, then document-derived)
        messages: Messages sorted by elapsed seconds
        total_count: Number of messages
        duration: Declared duration in seconds (0 if absent)
        parse_instant: When parsing finished (UTC)
        source: Source identifier the document was read from
    """
    metadata: RecordingMetadata
    messages: Tuple[Message, ...]
    total_count: int
    duration: float
    parse_instant: datetime
    source: str = ""

    @property
    def messages_per_minute(self) -> float:
        if self.duration <= 0:
            return 0.0
        return self.total_count / (self.duration / 60.0)

    @property
    def recording_id(self) -> str:
        if not self.source:
            return ""
        return PurePath(self.source.replace("\\", "/")).stem


# ============================================================
# Analysis Structures
# ============================================================

@dataclass(frozen=True)
class WindowSample:
    """Messages falling in [window_start, window_start + window_size)."""
    window_start: float
    count: int
    member_messages: Tuple[Message, ...] = ()


@dataclass(frozen=True)
class DensityPoint:
    """One point of the density series (window start, message count)."""
    time: float
    count: int


@dataclass(frozen=True)
class Peak:
    """A window whose density is a strict local maximum above threshold.

    Attributes:
        start_time: Window start in seconds since recording start
        end_time: start_time + window_size
        start_absolute_time: Absolute time of the first message in the window
        end_absolute_time: Absolute time of the last message in the window
        count: Number of messages in the window
        average_content_length: Mean characters per message
        dominant_position: Most common display position in the window
    """
    start_time: float
    end_time: float
    start_absolute_time: datetime
    end_absolute_time: datetime
    count: int
    average_content_length: float
    dominant_position: Position


@dataclass(frozen=True)
class AnalysisReport:
    """Peaks plus the intermediate values that produced them."""
    peaks: List[Peak]
    threshold: int
    average_density: float
    window_size: float
    step_size: float
    min_time: float
    max_time: float
    window_count: int
    density_series: List[DensityPoint] = field(default_factory=list)


# ============================================================
# Resilience
# ============================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Total number of calls, including the first one
        base_delay: Seconds to wait after the first failure
        max_delay: Upper bound for any single wait
        backoff_multiplier: Growth factor applied after every failure
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative.")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0.")


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
