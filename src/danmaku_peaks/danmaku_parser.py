#!/usr/bin/env python3
"""Danmaku XML parsing for Danmaku Peaks.

This module handles:
- Recording metadata inference from the source path
- Decoding the comma-separated ``p`` attribute of ``<d>`` elements
- Event-driven (SAX) parsing of one danmaku XML document
- A cheap byte-level pre-check for danmaku exports

A typical element looks like::

    <d p="12.5,1,25,16777215,1691925600000,0,a1b2c3,0">message text</d>

Malformed ``<d>`` elements (fewer than five fields) are dropped without
raising; only a document that cannot be tokenized fails the parse.
"""
from __future__ import annotations

import codecs
import dataclasses
import io
import math
import os
import re
import xml.sax
from datetime import date, datetime, timezone
from typing import List, Optional
from xml.sax.handler import ContentHandler, feature_external_ges

from .errors import MalformedDocument
from .models import Message, ParsedRecording, Position, RecordingMetadata


# ============================================================
# Path Metadata Inference
# ============================================================

RECORD_PREFIXES = ("record-", "录制-")

_PATH_SPLIT_RE = re.compile(r"[\\/]+")
_TITLE_TRAILING_MARKS = "!！ "

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _hyphen_parts(segment: str) -> List[str]:
    return [p for p in segment.split("-") if p]


def _channel_from_segment(segment: str) -> str:
    parts = _hyphen_parts(segment)
    if not parts:
        return ""
    last = parts[-1].strip()
    # "Name-Channel": the marker is last, the name precedes it
    if last.lower() == "channel" and len(parts) > 1:
        return "-".join(parts[:-1]).strip()
    return last


def _parse_date_token(token: str) -> Optional[date]:
    if len(token) != 8 or not token.isascii() or not token.isdigit():
        return None
    try:
        return date(int(token[:4]), int(token[4:6]), int(token[6:]))
    except ValueError:
        return None


def _clean_title(title: str) -> str:
    title = title.replace(".xml", "")
    return title.rstrip(_TITLE_TRAILING_MARKS).strip()


def _apply_record_segment(segment: str, metadata: RecordingMetadata) -> None:
    """Decompose ``record-<YYYYMMDD>-<title...>`` into date and title."""
    parts = _hyphen_parts(segment)
    if len(parts) < 2:
        return
    parsed = _parse_date_token(parts[1])
    if parsed is not None:
        metadata.recording_date = parsed
    if len(parts) > 2:
        title = _clean_title("-".join(parts[2:]))
        if title:
            metadata.title = title


def infer_metadata_from_path(source: str, metadata: Optional[RecordingMetadata] = None) -> RecordingMetadata:
    """Infer channel, date and title from a recording's path.

    Expected layout: ``.../<name>-Channel/record-YYYYMMDD-<title>/record-YYYYMMDD-<title>.xml``.
    Segments that do not match are ignored; nothing here raises.

    Args:
        source: Path or name of the document (never opened)
        metadata: Existing metadata to update in place (new one if None)

    Returns:
        The updated metadata
    """
    if metadata is None:
        metadata = RecordingMetadata()
    if not source:
        return metadata

    segments = [s for s in _PATH_SPLIT_RE.split(source) if s]
    for segment in segments:
        if "-" in segment and "channel" in segment.lower():
            metadata.channel = _channel_from_segment(segment)
        elif segment.startswith(RECORD_PREFIXES):
            _apply_record_segment(segment, metadata)

    if segments:
        stem, _ = os.path.splitext(segments[-1])
        if stem.startswith(RECORD_PREFIXES):
            _apply_record_segment(stem, metadata)
    return metadata


# ============================================================
# Field Decoding
# ============================================================

MIN_DANMAKU_FIELDS = 5


def _to_float(value: str) -> Optional[float]:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return f


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _epoch_ms_to_datetime(value: str) -> datetime:
    ms = _to_float(value)
    if ms is None:
        return EPOCH
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return EPOCH


def decode_danmaku_attribute(p_value: Optional[str]) -> Optional[Message]:
    """Decode the ``p`` attribute of a ``<d>`` element into a message.

    Field layout: elapsed seconds, mode, font size, color, epoch ms,
    pool, user id, row id. Unparseable numeric fields fall back to
    defaults rather than rejecting the element.

    Args:
        p_value: Raw attribute value, or None if the attribute is missing

    Returns:
        Message with empty content, or None if fewer than five fields
    """
    if not p_value:
        return None
    fields = p_value.split(",")
    if len(fields) < MIN_DANMAKU_FIELDS:
        return None

    elapsed = _to_float(fields[0])
    mode = _to_int(fields[1])
    color = fields[3].strip()
    user_id = fields[6].strip() if len(fields) > 6 else ""

    return Message(
        elapsed_seconds=max(0.0, elapsed) if elapsed is not None else 0.0,
        absolute_time=_epoch_ms_to_datetime(fields[4]),
        user_id=user_id or None,
        content="",
        color=color or None,
        font_size=_to_int(fields[2]),
        position=Position.from_mode(mode if mode is not None else 1),
    )


# ============================================================
# Message Reconstruction
# ============================================================

class MessageReconstructor:
    """Pairs ``<d>`` open events with the text that arrives before the close.

    Exactly one record can be open at a time. Opening a record appends it
    with empty content; closing assigns the collected text to that record
    only. A dropped element clears the slot so its text cannot land on an
    earlier record.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._open_index: Optional[int] = None

    @property
    def open_index(self) -> Optional[int]:
        return self._open_index

    def __len__(self) -> int:
        return len(self._messages)

    def open_record(self, message: Message) -> int:
        self._messages.append(message)
        self._open_index = len(self._messages) - 1
        return self._open_index

    def discard_open(self) -> None:
        self._open_index = None

    def close_record(self, text: str) -> Optional[Message]:
        """Close the open record, filling its content from `text`.

        Returns:
            The completed message, or None if no record was open
        """
        index = self._open_index
        self._open_index = None
        if index is None:
            return None
        current = self._messages[index]
        if text and not current.content:
            current = dataclasses.replace(current, content=text)
            self._messages[index] = current
        return current

    def finish(self) -> List[Message]:
        """Return all messages, stably sorted by elapsed seconds."""
        self._open_index = None
        return sorted(self._messages, key=lambda m: m.elapsed_seconds)


# ============================================================
# SAX Handler
# ============================================================

class DanmakuContentHandler(ContentHandler):
    """Collects messages and metadata from SAX events of one document."""

    def __init__(self, metadata: RecordingMetadata):
        super().__init__()
        self.metadata = metadata
        self.messages: List[Message] = []
        self._reconstructor = MessageReconstructor()
        self._text: List[str] = []

    def startElement(self, name, attrs):
        self._text = []
        tag = name.lower()
        if tag == "d":
            message = decode_danmaku_attribute(attrs.get("p"))
            if message is None:
                self._reconstructor.discard_open()
            else:
                self._reconstructor.open_record(message)
        elif tag in ("video", "recording"):
            self._apply_video_attributes(attrs)
        elif tag in ("chatserver", "server"):
            host = attrs.get("host")
            if host:
                self.metadata.chat_server = host

    def characters(self, content):
        self._text.append(content)

    def endElement(self, name):
        text = "".join(self._text).strip()
        self._text = []
        tag = name.lower()
        if tag == "d":
            self._reconstructor.close_record(text)
        elif tag in ("title", "name"):
            if text:
                self.metadata.title = text
        elif tag == "duration":
            duration = _to_float(text)
            if duration is not None:
                self.metadata.declared_duration = duration
        elif tag in ("chatserver", "server"):
            if text:
                self.metadata.chat_server = text

    def endDocument(self):
        self.messages = self._reconstructor.finish()

    def _apply_video_attributes(self, attrs) -> None:
        if "duration" in attrs:
            duration = _to_float(attrs.get("duration"))
            self.metadata.declared_duration = duration if duration is not None else 0.0
        if "title" in attrs:
            self.metadata.title = attrs.get("title")
        if "channel" in attrs:
            self.metadata.channel = attrs.get("channel")


# ============================================================
# Parsing
# ============================================================

# codec names (as codecs.lookup reports them) that expat decodes by itself
NATIVE_ENCODINGS = {"utf-8", "utf-16", "ascii", "iso8859-1", "latin-1"}

_DECLARED_ENCODING_RE = re.compile(rb"""^\s*<\?xml[^>]*?encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")
_DECLARATION_TEXT_RE = re.compile(r"""^(\s*<\?xml[^>]*?encoding\s*=\s*["'])[A-Za-z0-9._-]+(["'])""")


def reencode_declared_encoding(data: bytes) -> bytes:
    """Re-encode a document declaring a non-UTF encoding (e.g. GBK) as UTF-8.

    Expat only decodes a handful of encodings itself; anything else that
    Python's codecs know is transcoded here and the declaration rewritten.

    Raises:
        LookupError: If the declared encoding is unknown
        UnicodeDecodeError: If the bytes do not match the declared encoding
    """
    m = _DECLARED_ENCODING_RE.match(data)
    if m is None:
        return data
    name = m.group(1).decode("ascii")
    if codecs.lookup(name).name in NATIVE_ENCODINGS:
        return data
    text = _DECLARATION_TEXT_RE.sub(r"\g<1>UTF-8\g<2>", data.decode(name), count=1)
    return text.encode("utf-8")


def parse_danmaku_xml(data: bytes, source: str = "") -> ParsedRecording:
    """Parse one danmaku XML document.

    Path metadata is inferred first; in-document metadata then overrides
    it in document order. The caller does the I/O.

    Args:
        data: Raw bytes of the XML document
        source: Path or name of the document, used for metadata only

    Returns:
        ParsedRecording with messages sorted by elapsed seconds

    Raises:
        MalformedDocument: If the XML cannot be tokenized
    """
    metadata = infer_metadata_from_path(source)
    handler = DanmakuContentHandler(metadata)

    parser = xml.sax.make_parser()
    parser.setFeature(feature_external_ges, False)
    parser.setContentHandler(handler)
    try:
        parser.parse(io.BytesIO(reencode_declared_encoding(data)))
    except xml.sax.SAXParseException as e:
        raise MalformedDocument(
            f"Malformed XML in {source or '<bytes>'}: {e.getMessage()}",
            source=source,
            line=e.getLineNumber(),
            column=e.getColumnNumber(),
        ) from e
    except xml.sax.SAXException as e:
        raise MalformedDocument(f"Malformed XML in {source or '<bytes>'}: {e}", source=source) from e
    except (ValueError, LookupError) as e:
        # undecodable bytes, unknown or unsupported declared encoding
        raise MalformedDocument(f"Cannot decode {source or '<bytes>'}: {e}", source=source) from e

    messages = tuple(handler.messages)
    return ParsedRecording(
        metadata=metadata,
        messages=messages,
        total_count=len(messages),
        duration=metadata.declared_duration,
        parse_instant=datetime.now(timezone.utc),
        source=source,
    )


# ============================================================
# Pre-check
# ============================================================

DANMAKU_MARKERS = (b"<d ", b"<danmaku", b"bilibili")


def looks_like_danmaku(data: bytes) -> bool:
    """Cheap check that bytes are worth handing to the parser.

    Args:
        data: Raw file bytes

    Returns:
        True if any known danmaku marker appears in the bytes
    """
    return any(marker in data for marker in DANMAKU_MARKERS)
