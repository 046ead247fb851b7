"""Stem separation adapter (Demucs run as an external process).

Given a source file and a scratch directory, produce the four stems
``vocals``, ``drums``, ``bass`` and ``other``. Any launch failure, non-zero
exit or missing stem raises `SeparationUnavailable`; the orchestrator then
falls back to the single-stage chain for that job.
"""
from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from loguru import logger

from .errors import SeparationUnavailable
from .logging import truncate

if TYPE_CHECKING:
    from .encoder import ProcessRunner


STEM_NAMES = ("vocals", "drums", "bass", "other")
DEFAULT_MODEL = "htdemucs"
STEM_EXT = "wav"


def default_command() -> List[str]:
    return [sys.executable, "-m", "demucs"]


class StemSeparator:
    def __init__(
        self,
        runner: "ProcessRunner",
        *,
        command: Optional[Sequence[str]] = None,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self.runner = runner
        self.command = list(command) if command else default_command()
        self.model = model

    def build_cmd(self, src: Path, scratch: Path) -> List[str]:
        return [
            *self.command,
            "-n",
            self.model,
            "-o",
            str(scratch),
            "--filename",
            "{stem}.{ext}",
            str(src),
        ]

    def expected_stems(self, scratch: Path) -> Dict[str, Path]:
        out_dir = scratch / self.model
        return {name: out_dir / f"{name}.{STEM_EXT}" for name in STEM_NAMES}

    def separate(self, src: Path, scratch: Path) -> Dict[str, Path]:
        """Run separation into `scratch`; return stem name -> path in STEM_NAMES order."""
        cmd = self.build_cmd(src, scratch)
        rc, err = self.runner.run(cmd)
        if rc != 0:
            logger.bind(action="separate", file=src.name, status="error", rc=rc).warning(
                f"Separation exited with {rc}: {truncate(err, max_lines=5)}"
            )
            raise SeparationUnavailable(f"separator exited with code {rc}")
        stems = self.expected_stems(scratch)
        missing = [name for name, path in stems.items() if not path.is_file()]
        if missing:
            raise SeparationUnavailable(f"missing stems: {', '.join(missing)}")
        logger.bind(action="separate", file=src.name, status="ok").debug("separation complete")
        return stems


@dataclass
class SeparatorStatus:
    available: bool
    command: Optional[List[str]] = None
    error: Optional[str] = None


def probe_separator(command: Optional[Sequence[str]] = None) -> SeparatorStatus:
    """Light check: the separator's executable can be found.

    The default ``python -m demucs`` form additionally requires the demucs
    module to be importable by that interpreter, which is only known once it runs.
    """
    cmd = list(command) if command else default_command()
    exe = cmd[0]
    if Path(exe).is_file() or shutil.which(exe):
        return SeparatorStatus(available=True, command=cmd)
    return SeparatorStatus(available=False, command=cmd, error=f"{exe} not found")
