"""Locate and probe the ffmpeg executable.

Resolution order: bundled path (explicit setting, then ``pau/bin/ffmpeg``),
the well-known install locations, then PATH. Resolved once at startup; a
missing encoder blocks every Run.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence


BUNDLED_FFMPEG = Path(__file__).parent / "bin" / "ffmpeg"

WELL_KNOWN_FFMPEG_PATHS = (
    "/opt/homebrew/bin/ffmpeg",  # Homebrew on Apple Silicon
    "/usr/local/bin/ffmpeg",     # Homebrew on Intel, manual installs
    "/usr/bin/ffmpeg",           # distro packages
    "/opt/local/bin/ffmpeg",     # MacPorts
)


@dataclass
class FFmpegStatus:
    available: bool
    ffmpeg_path: Optional[str] = None
    ffmpeg_version: Optional[str] = None
    has_truehd: Optional[bool] = None
    has_dca: Optional[bool] = None
    has_flac: Optional[bool] = None
    has_alac: Optional[bool] = None
    error: Optional[str] = None


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def locate_ffmpeg(
    bundled: Optional[str] = None,
    *,
    candidates: Sequence[str] = WELL_KNOWN_FFMPEG_PATHS,
) -> Optional[str]:
    """Return the first usable ffmpeg path, or None."""
    for p in ([Path(bundled).expanduser()] if bundled else []) + [BUNDLED_FFMPEG]:
        if _is_executable(p):
            return str(p)
    for c in candidates:
        if _is_executable(Path(c)):
            return c
    return shutil.which("ffmpeg")


def _run(cmd: list[str]) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            text=True,
        )
        return proc.returncode, proc.stdout, proc.stderr
    except OSError as exc:
        return 1, "", str(exc)


def probe_ffmpeg(path: Optional[str] = None) -> FFmpegStatus:
    path = path or locate_ffmpeg()
    if not path:
        return FFmpegStatus(available=False, error="ffmpeg not found (bundle, well-known paths, PATH)")

    rc_v, out_v, err_v = _run([path, "-version"])
    version = out_v.splitlines()[0].strip() if out_v else None

    rc_e, out_e, _ = _run([path, "-hide_banner", "-encoders"])
    encoders = set()
    for line in (out_e or "").splitlines():
        parts = line.split()
        # " A....D flac   FLAC (Free Lossless Audio Codec)"
        if len(parts) >= 2 and parts[0].startswith("A"):
            encoders.add(parts[1])
    ok_e = rc_e == 0

    return FFmpegStatus(
        available=(rc_v == 0),
        ffmpeg_path=path,
        ffmpeg_version=version,
        has_truehd=("truehd" in encoders) if ok_e else False,
        has_dca=("dca" in encoders) if ok_e else False,
        has_flac=("flac" in encoders) if ok_e else False,
        has_alac=("alac" in encoders) if ok_e else False,
        error=None if rc_v == 0 else (err_v or "ffmpeg -version failed"),
    )


if __name__ == "__main__":
    s = probe_ffmpeg()
    print(s)
