"""Encoder command construction and execution.

ffmpeg is driven as a black box: one invocation per job (single-stage) with
the stereo source and an ``-af`` chain, or one invocation with the four stems
as inputs and a ``-filter_complex`` graph (stem-mix). Standard error is
captured in full; the caller decides whether a non-zero exit is a failure or a
cancellation.

`ProcessRunner` runs one process at a time so that `terminate()` can reach the
in-flight process from another thread.
"""
from __future__ import annotations

import shlex
import subprocess
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from .catalog import EncodingParams
from .filtergraph import FilterGraphSpec


LAUNCH_FAILED_RC = 127


def build_upmix_cmd(
    ffmpeg: str,
    src: Path,
    dest: Path,
    spec: FilterGraphSpec,
    params: EncodingParams,
) -> List[str]:
    """Single-input encode: ``-i src -vn -af <chain> -c:a <codec> ... -y dest``."""
    if spec.is_stem_mix:
        raise ValueError("stem-mix specs need build_stem_mix_cmd")
    return [
        ffmpeg,
        "-i",
        str(src),
        "-vn",
        "-af",
        spec.serialize(),
        "-c:a",
        params.codec,
        *params.to_args(),
        "-y",
        str(dest),
    ]


def build_stem_mix_cmd(
    ffmpeg: str,
    stems: Sequence[Path],
    dest: Path,
    spec: FilterGraphSpec,
    params: EncodingParams,
) -> List[str]:
    """Multi-input encode: one ``-i`` per stem, then ``-filter_complex``."""
    if not spec.is_stem_mix:
        raise ValueError("chain specs need build_upmix_cmd")
    if len(stems) != len(spec.inputs):
        raise ValueError(f"expected {len(spec.inputs)} stems, got {len(stems)}")
    cmd: List[str] = [ffmpeg]
    for stem in stems:
        cmd += ["-i", str(stem)]
    cmd += [
        "-vn",
        "-filter_complex",
        spec.serialize(),
        "-map",
        f"[{spec.output_label}]",
        "-c:a",
        params.codec,
        *params.to_args(),
        "-y",
        str(dest),
    ]
    return cmd


def cmd_to_string(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(p) for p in cmd)


class ProcessRunner:
    """Run external processes one at a time with full stderr capture.

    kill_after: seconds to wait after `terminate()` before sending SIGKILL;
        None disables the escalation.
    stop_event: when set before the process has been spawned, the process
        is terminated immediately after spawn.
    """

    def __init__(self, *, kill_after: Optional[float] = None, stop_event: Optional[threading.Event] = None) -> None:
        self.kill_after = kill_after
        self.stop_event = stop_event
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._proc is not None

    def run(self, cmd: Sequence[str]) -> tuple[int, str]:
        """Run `cmd` to completion; return (returncode, stderr)."""
        logger.debug("Running: {}", cmd_to_string(cmd))
        try:
            proc = subprocess.Popen(
                list(cmd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            return LAUNCH_FAILED_RC, f"Failed to launch {cmd[0]}: {e}"
        with self._lock:
            self._proc = proc
        try:
            if self.stop_event is not None and self.stop_event.is_set():
                self._terminate(proc)
            _, err = proc.communicate()
            return proc.returncode, err or ""
        finally:
            with self._lock:
                self._proc = None

    def terminate(self) -> bool:
        """Send SIGTERM to the in-flight process. Returns True if one was running."""
        with self._lock:
            proc = self._proc
        if proc is None:
            return False
        self._terminate(proc)
        return True

    def _terminate(self, proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        logger.debug(f"Terminating pid {proc.pid}")
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        if self.kill_after is not None:
            timer = threading.Timer(self.kill_after, self._kill_if_alive, args=(proc,))
            timer.daemon = True
            timer.start()

    @staticmethod
    def _kill_if_alive(proc: subprocess.Popen) -> None:
        if proc.poll() is None:
            logger.warning(f"pid {proc.pid} ignored SIGTERM; killing")
            try:
                proc.kill()
            except ProcessLookupError:
                pass
