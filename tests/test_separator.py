from pathlib import Path

import pytest

from conftest import FAKE_DEMUCS, FakeRunner
from pau.errors import SeparationUnavailable
from pau.separator import STEM_NAMES, StemSeparator, default_command, probe_separator


def test_build_cmd():
    sep = StemSeparator(FakeRunner(), command=["demucs"], model="htdemucs_ft")
    assert sep.build_cmd(Path("/in/a.wav"), Path("/tmp/s")) == [
        "demucs", "-n", "htdemucs_ft", "-o", "/tmp/s", "--filename", "{stem}.{ext}", "/in/a.wav",
    ]


def test_default_command_runs_demucs_module():
    sep = StemSeparator(FakeRunner())
    assert sep.command == default_command()
    assert sep.command[-2:] == ["-m", "demucs"]


def test_separate_returns_stems_in_order(tmp_path):
    sep = StemSeparator(FakeRunner(), command=[FAKE_DEMUCS])
    stems = sep.separate(tmp_path / "a.wav", tmp_path)
    assert tuple(stems) == STEM_NAMES
    assert all(p.is_file() for p in stems.values())
    assert stems["vocals"] == tmp_path / "htdemucs" / "vocals.wav"


def test_separate_nonzero_exit(tmp_path):
    sep = StemSeparator(FakeRunner(separation_ok=False), command=[FAKE_DEMUCS])
    with pytest.raises(SeparationUnavailable):
        sep.separate(tmp_path / "a.wav", tmp_path)


def test_separate_missing_stem(tmp_path):
    runner = FakeRunner()
    sep = StemSeparator(runner, command=["other-separator"])
    # exits 0 but writes nothing
    with pytest.raises(SeparationUnavailable, match="missing stems: vocals, drums, bass, other"):
        sep.separate(tmp_path / "a.wav", tmp_path)


def test_probe_separator(tmp_path):
    exe = tmp_path / "demucs"
    exe.write_text("#!/bin/sh\n")
    assert probe_separator([str(exe)]).available
    missing = probe_separator([str(tmp_path / "nope")])
    assert not missing.available
    assert "not found" in missing.error
