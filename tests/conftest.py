from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest
from loguru import logger

from pau.catalog import ChannelLayout, ContainerFormat, OutputFormat, Quality
from pau.events import RunSnapshot
from pau.handles import ResourceHandle
from pau.orchestrator import RunConfig, Upmixer
from pau.separator import STEM_NAMES, StemSeparator


FAKE_FFMPEG = "/fake/bin/ffmpeg"
FAKE_DEMUCS = "fake-demucs"


class FakeRunner:
    """Stands in for ProcessRunner; records commands and replays results.

    results: (returncode, stderr) per call; calls beyond the list succeed.
    on_run: callback(cmd, call_number) invoked before the result is returned.
    """

    def __init__(
        self,
        results: Optional[List[Tuple[int, str]]] = None,
        on_run: Optional[Callable[[List[str], int], None]] = None,
        separation_ok: bool = True,
    ) -> None:
        self.results = list(results or [])
        self.on_run = on_run
        self.separation_ok = separation_ok
        self.calls: List[List[str]] = []
        self.terminated = 0

    @property
    def encode_calls(self) -> List[List[str]]:
        return [c for c in self.calls if c[0] == FAKE_FFMPEG]

    def run(self, cmd):
        cmd = list(cmd)
        self.calls.append(cmd)
        if self.on_run is not None:
            self.on_run(cmd, len(self.calls))
        if cmd[0] == FAKE_DEMUCS:
            return self._separate(cmd)
        if self.results:
            return self.results.pop(0)
        return 0, ""

    def _separate(self, cmd):
        if not self.separation_ok:
            return 1, "demucs: model not found"
        out = Path(cmd[cmd.index("-o") + 1]) / cmd[cmd.index("-n") + 1]
        out.mkdir(parents=True, exist_ok=True)
        for name in STEM_NAMES:
            (out / f"{name}.wav").write_bytes(b"RIFF")
        return 0, ""

    def terminate(self) -> bool:
        self.terminated += 1
        return True


@pytest.fixture(autouse=True)
def quiet_logger():
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    d = tmp_path / "out"
    d.mkdir()
    return d


@pytest.fixture
def make_sources(tmp_path: Path):
    def _make(*names: str) -> List[Path]:
        src = tmp_path / "src"
        src.mkdir(exist_ok=True)
        paths = []
        for n in names:
            p = src / n
            p.write_bytes(b"RIFF....WAVE")
            paths.append(p)
        return paths

    return _make


def make_upmixer(runner: FakeRunner, tmp_path: Path, *, encoder_path: Optional[str] = FAKE_FFMPEG) -> Upmixer:
    up = Upmixer(
        encoder_path=encoder_path,
        runner=runner,
        scratch_root=tmp_path / "scratch",
    )
    (tmp_path / "scratch").mkdir(exist_ok=True)
    up.separator = StemSeparator(runner, command=[FAKE_DEMUCS], model="htdemucs")
    return up


def make_config(
    out_dir: Optional[Path],
    *,
    fmt: OutputFormat = OutputFormat.PCM,
    layout: ChannelLayout = ChannelLayout.PCM_7_1,
    quality: Quality = Quality.STANDARD,
    container: ContainerFormat = ContainerFormat.FLAC,
    ai_mode: bool = False,
) -> RunConfig:
    return RunConfig(
        output_format=fmt,
        layout=layout,
        quality=quality,
        container=container,
        ai_mode=ai_mode,
        output_dir=ResourceHandle.directory(out_dir) if out_dir is not None else None,
    )


class SnapshotRecorder:
    def __init__(self) -> None:
        self.snapshots: List[RunSnapshot] = []

    def __call__(self, snap: RunSnapshot) -> None:
        self.snapshots.append(snap)

    @property
    def statuses(self) -> List[str]:
        return [s.status for s in self.snapshots]
