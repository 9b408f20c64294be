#!/usr/bin/env python3
"""Exception types for Danmaku Peaks.

None of these are fatal to a batch: callers record the failure for the
document or scan attempt at hand and move on.
"""
from __future__ import annotations

from typing import Optional


class DanmakuPeaksError(Exception):
    """Base class for all errors raised by this package."""


# ============================================================
# Parsing
# ============================================================

class ParseError(DanmakuPeaksError):
    """A document could not be turned into a recording."""


class MalformedDocument(ParseError):
    """The XML could not be tokenized.

    Attributes:
        source: Source identifier of the document
        line: Line of the tokenizer error, if known
        column: Column of the tokenizer error, if known
    """

    def __init__(self, message: str, *, source: str = "", line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.source = source
        self.line = line
        self.column = column


class NotDanmakuFile(ParseError):
    """The bytes do not look like a danmaku export at all."""


# ============================================================
# File Source
# ============================================================

class FileSourceError(DanmakuPeaksError):
    """A file source could not list or read a path."""

    def __init__(self, message: str, *, path: str = ""):
        super().__init__(message)
        self.path = path


class FileNotFound(FileSourceError):
    pass


class FileUnreadable(FileSourceError):
    pass


# ============================================================
# Resilience
# ============================================================

class TemporarilyUnavailable(DanmakuPeaksError):
    """Raised by an open circuit breaker; retry later."""


class RetryExhausted(DanmakuPeaksError):
    """All retry attempts failed.

    Attributes:
        attempts: Number of attempts made
        last_error: The failure raised by the final attempt
    """

    def __init__(self, message: str, *, attempts: int, last_error: BaseException):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class OperationCancelled(DanmakuPeaksError):
    """A retry loop was cancelled while waiting between attempts."""
