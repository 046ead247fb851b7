"""Run-level behaviour of the orchestrator with ffmpeg/demucs replaced by FakeRunner."""
from __future__ import annotations

import pytest
from loguru import logger

from conftest import FAKE_DEMUCS, FAKE_FFMPEG, FakeRunner, SnapshotRecorder, make_config, make_upmixer
from pau.catalog import ChannelLayout, ContainerFormat, OutputFormat, Quality
from pau.errors import EncoderUnavailable, OutputDirectoryUnset, QueueEmpty, RunActive
from pau.jobs import JobStatus
from pau.orchestrator import (
    STATUS_CANCELLED,
    STATUS_COMPLETE,
    STATUS_ERROR,
    STATUS_SEPARATING,
    RunConfig,
    status_upmixing,
)


def statuses(up):
    return [j.status for j in up.queue.jobs()]


def test_all_jobs_upmixed(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    for p in make_sources("a.wav", "b.wav", "c.wav"):
        up.add_file(p)

    snap = up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.UPMIXED] * 3
    assert snap.progress == 1.0
    assert snap.completed == 3
    assert snap.status == STATUS_COMPLETE
    assert snap.error is None
    assert not snap.running
    assert len(runner.encode_calls) == 3


def test_encode_command_shape(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("track.wav")
    up.add_file(src)

    up.run(make_config(out_dir, layout=ChannelLayout.PCM_7_1, container=ContainerFormat.FLAC))

    cmd = runner.encode_calls[0]
    assert cmd[:5] == [FAKE_FFMPEG, "-i", str(src.resolve()), "-vn", "-af"]
    assert cmd[5].endswith("pan=7.1|FL=FL|FR=FR|FC=0.5*FL+0.5*FR|LFE=0.1*FL+0.1*FR|BL=0.3*FL|BR=0.3*FR|SL=0.7*FL|SR=0.7*FR")
    assert cmd[6:8] == ["-c:a", "flac"]
    assert cmd[-2:] == ["-y", str(out_dir.resolve() / "track_7.1.flac")]


def test_stop_on_first_failure_leaves_rest_pending(tmp_path, out_dir, make_sources):
    runner = FakeRunner(results=[(0, ""), (1, "Error while filtering: boom\n")])
    up = make_upmixer(runner, tmp_path)
    for p in make_sources("1.wav", "2.wav", "3.wav", "4.wav"):
        up.add_file(p)

    snap = up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.UPMIXED, JobStatus.FAILED, JobStatus.PENDING, JobStatus.PENDING]
    failed = up.queue.jobs()[1]
    assert failed.reason == "Error while filtering: boom\n"
    assert snap.status == STATUS_ERROR
    assert "boom" in snap.error
    assert snap.progress == pytest.approx(0.5)
    assert len(runner.encode_calls) == 2


def test_failure_with_empty_stderr_still_has_reason(tmp_path, out_dir, make_sources):
    runner = FakeRunner(results=[(69, "")])
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("x.wav")
    up.add_file(src)

    up.run(make_config(out_dir))

    job = up.queue.jobs()[0]
    assert job.status is JobStatus.FAILED
    assert job.reason and "69" in job.reason


def test_cancel_between_jobs_marks_remaining_cancelled(tmp_path, out_dir, make_sources):
    k = 2
    up_holder = {}

    def on_run(cmd, n):
        if n == k:
            up_holder["up"].cancel()

    runner = FakeRunner(on_run=on_run)
    up = make_upmixer(runner, tmp_path)
    up_holder["up"] = up
    for p in make_sources("1.wav", "2.wav", "3.wav", "4.wav", "5.wav"):
        up.add_file(p)

    snap = up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.UPMIXED] * k + [JobStatus.CANCELLED] * 3
    assert snap.progress == 1.0
    assert snap.status == STATUS_CANCELLED
    assert snap.error is None
    assert len(runner.encode_calls) == k
    assert runner.terminated == 1


def test_nonzero_exit_during_cancel_is_cancelled_not_failed(tmp_path, out_dir, make_sources):
    up_holder = {}

    def on_run(cmd, n):
        if n == 1:
            up_holder["up"].cancel()

    runner = FakeRunner(results=[(255, "Exiting normally, received signal 15.")], on_run=on_run)
    up = make_upmixer(runner, tmp_path)
    up_holder["up"] = up
    for p in make_sources("a.wav", "b.wav"):
        up.add_file(p)

    snap = up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.CANCELLED, JobStatus.CANCELLED]
    assert all(j.reason is None for j in up.queue.jobs())
    assert snap.error is None


def test_cancel_during_separation_does_not_fall_back(tmp_path, out_dir, make_sources):
    up_holder = {}

    def on_run(cmd, n):
        if cmd[0] == FAKE_DEMUCS:
            up_holder["up"].cancel()

    runner = FakeRunner(on_run=on_run, separation_ok=False)
    up = make_upmixer(runner, tmp_path)
    up_holder["up"] = up
    rec = SnapshotRecorder()
    up.bus.subscribe(rec)
    for p in make_sources("a.wav", "b.wav"):
        up.add_file(p)

    snap = up.run(make_config(out_dir, layout=ChannelLayout.PCM_7_1_4, ai_mode=True))

    assert statuses(up) == [JobStatus.CANCELLED, JobStatus.CANCELLED]
    assert runner.encode_calls == []
    assert not any("falling back" in s for s in rec.statuses)
    assert snap.status == STATUS_CANCELLED
    assert snap.error is None
    assert list((tmp_path / "scratch").iterdir()) == []


def test_unexpected_error_fails_in_flight_job(tmp_path, out_dir, make_sources):
    def on_run(cmd, n):
        raise RuntimeError("runner exploded")

    up = make_upmixer(FakeRunner(on_run=on_run), tmp_path)
    for p in make_sources("a.wav", "b.wav"):
        up.add_file(p)

    snap = up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.FAILED, JobStatus.PENDING]
    assert up.queue.jobs()[0].reason == "runner exploded"
    assert snap.error == "runner exploded"
    assert snap.status == STATUS_ERROR
    assert not snap.running
    assert not up.queue.run_active


def test_ai_fallback_when_separation_fails(tmp_path, out_dir, make_sources):
    runner = FakeRunner(separation_ok=False)
    up = make_upmixer(runner, tmp_path)
    rec = SnapshotRecorder()
    up.bus.subscribe(rec)
    (src,) = make_sources("song.flac")
    job = up.add_file(src)

    up.run(make_config(out_dir, layout=ChannelLayout.PCM_7_1_4, ai_mode=True))

    assert up.queue.get(job.id).status is JobStatus.UPMIXED
    fallback_idx = next(i for i, s in enumerate(rec.statuses) if "falling back" in s)
    upmixed_idx = next(i for i, s in enumerate(rec.snapshots) if s.job_status(job.id) is JobStatus.UPMIXED)
    assert fallback_idx < upmixed_idx
    assert STATUS_SEPARATING in rec.statuses

    (cmd,) = runner.encode_calls
    assert "-af" in cmd and "-filter_complex" not in cmd
    assert "TFL=0.2*FL" in cmd[cmd.index("-af") + 1]
    assert cmd[-1].endswith("song_7.1.4.flac")
    assert list((tmp_path / "scratch").iterdir()) == []


def test_ai_stem_mix_uses_four_inputs(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("song.wav")
    up.add_file(src)

    up.run(make_config(out_dir, fmt=OutputFormat.TRUEHD, layout=ChannelLayout.TRUEHD_7_1_4,
                       container=ContainerFormat.TRUEHD, ai_mode=True))

    assert statuses(up) == [JobStatus.UPMIXED]
    (cmd,) = runner.encode_calls
    assert cmd.count("-i") == 4
    inputs = [cmd[i + 1] for i, a in enumerate(cmd) if a == "-i"]
    assert [p.rsplit("/", 1)[-1] for p in inputs] == ["vocals.wav", "drums.wav", "bass.wav", "other.wav"]
    assert cmd.index("-filter_complex") > max(i for i, a in enumerate(cmd) if a == "-i")
    assert cmd[cmd.index("-map") + 1] == "[out]"
    assert cmd[-1].endswith("song_7.1.4.thd")
    # scratch dir removed after the job
    assert list((tmp_path / "scratch").iterdir()) == []


def test_ai_mode_ignored_for_non_height_layout(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("a.wav")
    up.add_file(src)

    up.run(make_config(out_dir, layout=ChannelLayout.PCM_5_1, ai_mode=True))

    assert [c[0] for c in runner.calls] == [FAKE_FFMPEG]


def test_stem_mix_encode_failure_fails_job(tmp_path, out_dir, make_sources):
    runner = FakeRunner(results=[(1, "truehd: unsupported channel layout")])
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("a.wav")
    up.add_file(src)

    up.run(make_config(out_dir, layout=ChannelLayout.PCM_7_1_4, ai_mode=True))

    job = up.queue.jobs()[0]
    assert job.status is JobStatus.FAILED
    assert job.reason == "truehd: unsupported channel layout"
    assert list((tmp_path / "scratch").iterdir()) == []


def test_missing_source_fails_job_and_stops(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    a, b = make_sources("a.wav", "b.wav")
    up.add_file(a)
    up.add_file(b)
    a.unlink()

    snap = up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.FAILED, JobStatus.PENDING]
    assert "a.wav" in up.queue.jobs()[0].reason
    assert runner.calls == []
    assert snap.status == STATUS_ERROR


def test_handles_released_on_every_path(tmp_path, out_dir, make_sources):
    runner = FakeRunner(results=[(0, ""), (1, "bad")])
    up = make_upmixer(runner, tmp_path)
    for p in make_sources("a.wav", "b.wav", "c.wav"):
        up.add_file(p)
    config = make_config(out_dir)

    up.run(config)

    assert all(j.source.open_count == 0 for j in up.queue.jobs())
    assert config.output_dir.open_count == 0


def test_status_messages_name_the_file(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    rec = SnapshotRecorder()
    up.bus.subscribe(rec)
    (src,) = make_sources("My Song.wav")
    up.add_file(src)

    up.run(make_config(out_dir))

    assert "Starting upmix..." in rec.statuses
    assert status_upmixing("My Song.wav") in rec.statuses
    assert rec.statuses[-1] == STATUS_COMPLETE
    assert rec.snapshots[-1].running is False


def test_precondition_encoder_missing(tmp_path, out_dir, make_sources):
    up = make_upmixer(FakeRunner(), tmp_path, encoder_path=None)
    (src,) = make_sources("a.wav")
    up.add_file(src)

    with pytest.raises(EncoderUnavailable):
        up.run(make_config(out_dir))

    snap = up.snapshot()
    assert snap.error
    assert snap.status == STATUS_ERROR
    assert statuses(up) == [JobStatus.PENDING]
    assert not up.queue.run_active


def test_precondition_output_dir_unset(tmp_path, make_sources):
    up = make_upmixer(FakeRunner(), tmp_path)
    (src,) = make_sources("a.wav")
    up.add_file(src)

    with pytest.raises(OutputDirectoryUnset):
        up.run(make_config(None))
    assert statuses(up) == [JobStatus.PENDING]


def test_precondition_empty_queue(tmp_path, out_dir):
    up = make_upmixer(FakeRunner(), tmp_path)
    with pytest.raises(QueueEmpty):
        up.run(make_config(out_dir))


def test_enqueue_and_clear_rejected_while_running(tmp_path, out_dir, make_sources):
    a, b, late = make_sources("a.wav", "b.wav", "late.wav")
    seen = []
    up_holder = {}

    def on_run(cmd, n):
        up = up_holder["up"]
        for op in (lambda: up.add_file(late), up.clear_files):
            try:
                op()
            except RunActive as e:
                seen.append(e)

    runner = FakeRunner(on_run=on_run)
    up = make_upmixer(runner, tmp_path)
    up_holder["up"] = up
    up.add_file(a)
    up.add_file(b)

    up.run(make_config(out_dir))

    assert len(seen) == 4
    assert len(up.queue) == 2
    assert statuses(up) == [JobStatus.UPMIXED, JobStatus.UPMIXED]


def test_clear_resets_run_state(tmp_path, out_dir, make_sources):
    runner = FakeRunner(results=[(1, "bad")])
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("a.wav")
    up.add_file(src)
    up.run(make_config(out_dir))
    assert up.snapshot().error

    up.clear_files()

    snap = up.snapshot()
    assert snap.jobs == ()
    assert snap.error is None
    assert snap.progress == 0.0
    assert snap.status == "Ready"


def test_second_run_only_processes_pending(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    a, b = make_sources("a.wav", "b.wav")
    up.add_file(a)
    up.run(make_config(out_dir))
    up.add_file(b)

    up.run(make_config(out_dir))

    assert statuses(up) == [JobStatus.UPMIXED, JobStatus.UPMIXED]
    assert len(runner.encode_calls) == 2
    assert runner.encode_calls[1][2] == str(b.resolve())


def test_incompatible_container_is_auto_corrected(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    (src,) = make_sources("a.wav")
    up.add_file(src)

    up.run(make_config(out_dir, fmt=OutputFormat.DTS, layout=ChannelLayout.DTS_7_1, container=ContainerFormat.FLAC))

    cmd = runner.encode_calls[0]
    assert cmd[cmd.index("-c:a") + 1] == "dca"
    assert cmd[-1].endswith("a_7.1.dts")


def test_non_pcm_quality_does_not_reach_encoder(tmp_path, out_dir, make_sources):
    cmds = []
    for quality in (Quality.CD, Quality.MAX_BIT_ULTRA):
        runner = FakeRunner()
        up = make_upmixer(runner, tmp_path)
        (src,) = make_sources("a.wav")
        up.add_file(src)
        up.run(make_config(out_dir, fmt=OutputFormat.THX, layout=ChannelLayout.THX_7_1, quality=quality))
        cmds.append(runner.encode_calls[0])
    assert cmds[0] == cmds[1]
    assert cmds[0][cmds[0].index("-ar") + 1] == "48000"


def test_start_runs_in_background(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    for p in make_sources("a.wav", "b.wav"):
        up.add_file(p)

    up.start(make_config(out_dir))
    assert up.wait(timeout=10)

    assert statuses(up) == [JobStatus.UPMIXED, JobStatus.UPMIXED]
    assert up.snapshot().status == STATUS_COMPLETE


def test_plan_lists_commands_without_running(tmp_path, out_dir, make_sources):
    runner = FakeRunner()
    up = make_upmixer(runner, tmp_path)
    for p in make_sources("a.wav", "b.wav"):
        up.add_file(p)

    plan = up.plan(make_config(out_dir, layout=ChannelLayout.PCM_5_1))

    assert [job.display_name for job, _ in plan] == ["a.wav", "b.wav"]
    assert plan[0][1][-1].endswith("a_5.1.flac")
    assert runner.calls == []
    assert statuses(up) == [JobStatus.PENDING, JobStatus.PENDING]


def test_run_config_resolve_corrects_layout():
    cfg = RunConfig(
        output_format=OutputFormat.DTS,
        layout=ChannelLayout.PCM_7_1_4,
        quality=Quality.STANDARD,
        container=ContainerFormat.WAV,
    ).resolve()
    assert cfg.layout is ChannelLayout.DTS_7_1
    assert cfg.container is ContainerFormat.DTS


def test_preflight_warns_when_container_lacks_channels(tmp_path, out_dir, make_sources):
    messages = []
    logger.add(messages.append, level="WARNING", format="{message}")
    up = make_upmixer(FakeRunner(), tmp_path)
    (src,) = make_sources("a.wav")
    up.add_file(src)

    up.preflight(make_config(out_dir, layout=ChannelLayout.PCM_7_1_4, container=ContainerFormat.FLAC))
    up.preflight(make_config(out_dir, layout=ChannelLayout.PCM_7_1_4, container=ContainerFormat.WAV))

    warnings = [m for m in messages if "at most 8 channels" in m]
    assert len(warnings) == 1
    assert "7.1.4 needs 12" in warnings[0]
