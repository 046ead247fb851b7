"""Scoped access handles for source files and the output directory.

A `ResourceHandle` is an opaque capability: callers never read its path
directly, they open it with ``with handle.access() as path:`` for exactly one
job (or one encode call) and the handle is released on every exit path.

A target that disappeared or became unreadable raises `AccessDenied`, which the
orchestrator treats as a per-job failure. A target that was replaced since the
handle was created ("stale") is still usable; a warning is logged.
"""
from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Literal, Optional, Tuple, Union

from loguru import logger

from .errors import AccessDenied


Kind = Literal["file", "directory"]


def _fingerprint(path: Path) -> Optional[Tuple[int, int]]:
    try:
        st = path.stat()
    except OSError:
        return None
    return st.st_dev, st.st_ino


class ResourceHandle:
    def __init__(self, path: Union[str, Path], *, kind: Kind = "file") -> None:
        p = Path(path).expanduser()
        try:
            p = p.resolve()
        except OSError:
            p = p.absolute()
        self._path = p
        self.kind: Kind = kind
        self._fingerprint = _fingerprint(p)
        self._lock = threading.Lock()
        self._open_count = 0

    @classmethod
    def directory(cls, path: Union[str, Path]) -> "ResourceHandle":
        return cls(path, kind="directory")

    @property
    def identity(self) -> str:
        """Stable key for de-duplication (the resolved location)."""
        return str(self._path)

    @property
    def display_name(self) -> str:
        return self._path.name

    @property
    def stem(self) -> str:
        return self._path.stem

    @property
    def open_count(self) -> int:
        with self._lock:
            return self._open_count

    @property
    def is_stale(self) -> bool:
        current = _fingerprint(self._path)
        return current is not None and self._fingerprint is not None and current != self._fingerprint

    def _check(self) -> None:
        p = self._path
        if self.kind == "file":
            if not p.is_file():
                raise AccessDenied(self.display_name, "file is missing")
            if not os.access(p, os.R_OK):
                raise AccessDenied(self.display_name, "file is not readable")
        else:
            if not p.is_dir():
                raise AccessDenied(str(p), "directory is missing")
            if not os.access(p, os.W_OK | os.X_OK):
                raise AccessDenied(str(p), "directory is not writable")

    @contextmanager
    def access(self) -> Iterator[Path]:
        """Acquire the resource for the duration of the ``with`` block."""
        self._check()
        if self.is_stale:
            logger.warning(f"Handle is stale for {self.display_name}; continuing with current target")
        with self._lock:
            self._open_count += 1
        try:
            yield self._path
        finally:
            with self._lock:
                self._open_count -= 1

    def __repr__(self) -> str:
        return f"ResourceHandle({self.identity!r}, kind={self.kind!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceHandle):
            return NotImplemented
        return self.identity == other.identity and self.kind == other.kind

    def __hash__(self) -> int:
        return hash((self.identity, self.kind))
