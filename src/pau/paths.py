"""Output file naming: ``<source stem>_<layout label>.<extension>``."""
from __future__ import annotations

import re
import unicodedata
from pathlib import Path


_UNSAFE_RE = re.compile(r'[\x00-\x1F\x7F<>:\/\\\|\?\*"]')

# Most filesystems cap a single name at 255 characters.
MAX_NAME_LEN = 255


def safe_filename(name: str, extension: str) -> str:
    """Make `name` + `extension` usable as one file name on any common filesystem.

    NFC-normalizes, replaces each unsafe character with one ``_``, drops trailing
    dots/spaces from the base and shortens the base so the extension survives.
    """
    ext = "." + extension.lstrip(".") if extension else ""
    base = unicodedata.normalize("NFC", name)
    base = _UNSAFE_RE.sub("_", base)
    base = base.rstrip(" .") or "_"
    return base[: MAX_NAME_LEN - len(ext)] + ext


def output_name(source_name: str, layout_label: str, extension: str) -> str:
    """e.g. ``output_name("track.wav", "7.1", "flac") == "track_7.1.flac"``."""
    return safe_filename(f"{Path(source_name).stem}_{layout_label}", extension)


def output_path_for(out_dir: Path, source_name: str, layout_label: str, extension: str) -> Path:
    return out_dir / output_name(source_name, layout_label, extension)
