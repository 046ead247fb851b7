"""Source discovery for the command line (standard library only)."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List

from loguru import logger


AUDIO_EXTENSIONS = frozenset({".wav", ".flac", ".aiff", ".aif", ".m4a", ".mp3", ".ogg", ".opus", ".wma"})


def is_audio_file(path: Path) -> bool:
    return path.suffix.lower() in AUDIO_EXTENSIONS


def scan_audio_files(src_root: Path) -> List[Path]:
    """All audio files under `src_root`, sorted for a stable queue order."""
    src_root = src_root.resolve()
    found: List[Path] = []
    for dirpath, _, filenames in os.walk(src_root):
        for name in filenames:
            p = Path(dirpath) / name
            if is_audio_file(p):
                found.append(p)
    return sorted(found)


def expand_sources(paths: Iterable[str | Path]) -> List[Path]:
    """Expand CLI arguments (files and/or directories) into audio files.

    Order follows the arguments; directories contribute their sorted contents.
    Missing paths are logged and skipped.
    """
    out: List[Path] = []
    for raw in paths:
        p = Path(raw).expanduser()
        if p.is_dir():
            out.extend(scan_audio_files(p))
        elif p.is_file():
            out.append(p.resolve())
        else:
            logger.warning(f"Skipping missing path: {p}")
    return out
