#!/usr/bin/env python3
"""File sources for Danmaku Peaks.

The pipeline only needs two operations from wherever recordings live:
list the entries of a directory and read a file's bytes. Local disk is
provided here; mounted shares work through the same class, and remote
APIs can implement the FileSource protocol.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Protocol, Union

from .errors import FileNotFound, FileUnreadable


@dataclass(frozen=True)
class Entry:
    """One directory entry.

    Attributes:
        path: Path relative to the source root, "/"-separated
        name: Final path component
        is_dir: True for directories
    """
    path: str
    name: str
    is_dir: bool


class FileSource(Protocol):
    def list_entries(self, path: str) -> List[Entry]:
        ...

    def read_bytes(self, path: str) -> bytes:
        ...


def join_path(parent: str, name: str) -> str:
    if not parent:
        return name
    return str(PurePosixPath(parent) / name)


class LocalFileSource:
    """FileSource over a directory on local (or locally mounted) disk.

    Hidden entries (leading ".") are skipped and entries come back
    sorted by name.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        return self.root / path if path else self.root

    def list_entries(self, path: str = "") -> List[Entry]:
        """List the entries of `path` (relative to the root).

        Raises:
            FileNotFound: If the directory doesn't exist
            FileUnreadable: If the directory can't be listed
        """
        d = self._resolve(path)
        if not d.exists():
            raise FileNotFound(f"Directory not found: {d}", path=path)
        try:
            children = sorted(d.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise FileUnreadable(f"Cannot list {d}: {e}", path=path) from e

        out: List[Entry] = []
        for child in children:
            if child.name.startswith("."):
                continue
            out.append(Entry(path=join_path(path, child.name), name=child.name, is_dir=child.is_dir()))
        return out

    def read_bytes(self, path: str) -> bytes:
        """Read a file's bytes.

        Raises:
            FileNotFound: If the file doesn't exist
            FileUnreadable: If the path is a directory or can't be read
        """
        p = self._resolve(path)
        if not p.exists():
            raise FileNotFound(f"File not found: {p}", path=path)
        if p.is_dir():
            raise FileUnreadable(f"Path is a directory (expected file): {p}", path=path)
        try:
            return p.read_bytes()
        except OSError as e:
            raise FileUnreadable(f"Cannot read {p}: {e}", path=path) from e
