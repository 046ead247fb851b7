"""Job orchestrator: drains the file queue through ffmpeg, one job at a time.

Run lifecycle: Idle -> Running -> {Completed, Cancelled}. Starting requires a
queue with pending jobs, no active Run, a located encoder and an output
directory; otherwise the Run never starts and the error is recorded.

Per job (in queue order):

1. stop if cancellation was requested (this and all remaining jobs -> Cancelled)
2. open the source handle for the duration of the job
3. Pending -> Processing, publish "Upmixing <name>..."
4. derive ``<stem>_<layout>.<ext>`` in the output directory
5. AI mode + height layout: separate stems into a scratch dir and encode the
   stem-mix graph; on separation failure fall back to step 6 for this job
6. encode the single-stage chain
7. non-zero exit -> Failed (stderr is the reason) unless cancellation is in
   flight, in which case -> Cancelled
8. first hard failure stops the Run; later jobs stay Pending
9. progress = finished / total after every job

All UI-visible state is published from the orchestrating thread as immutable
`RunSnapshot` values through the `EventBus`.
"""
from __future__ import annotations

import shutil
import tempfile
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from loguru import logger

from .catalog import (
    ChannelLayout,
    ContainerFormat,
    OutputFormat,
    Quality,
    auto_select_container,
    auto_select_layout,
    container_max_channels,
    encoding_params,
    fits_container,
)
from .encoder import ProcessRunner, build_stem_mix_cmd, build_upmix_cmd, cmd_to_string
from .errors import (
    AccessDenied,
    Cancelled,
    EncoderUnavailable,
    OutputDirectoryUnset,
    QueueEmpty,
    RunActive,
    SeparationUnavailable,
    SubprocessFailed,
    UpmixError,
)
from .events import EventBus, RunSnapshot
from .filtergraph import build
from .handles import ResourceHandle
from .jobs import FileQueue, Job, JobStatus
from .logging import bind_run, log_event, truncate
from .paths import output_path_for
from .separator import StemSeparator


STATUS_READY = "Ready"
STATUS_STARTING = "Starting upmix..."
STATUS_SEPARATING = "AI source separation in progress..."
STATUS_COMPLETE = "Upmixing complete."
STATUS_CANCELLED = "Upmix operation cancelled."
STATUS_ERROR = "An error occurred."


def status_upmixing(name: str) -> str:
    return f"Upmixing {name}..."


def status_fallback(name: str) -> str:
    return f"Separation failed for {name}, falling back to standard upmix..."


@dataclass(frozen=True)
class RunConfig:
    """Configuration snapshot shared by every job of one Run."""
    output_format: OutputFormat
    layout: ChannelLayout
    quality: Quality
    container: ContainerFormat
    ai_mode: bool = False
    output_dir: Optional[ResourceHandle] = None

    @property
    def uses_stems(self) -> bool:
        return self.ai_mode and self.layout.has_height

    def resolve(self) -> "RunConfig":
        """Auto-correct a layout or container that does not fit the format."""
        layout = auto_select_layout(self.output_format, self.layout)
        container = auto_select_container(self.output_format, self.container)
        if layout is not self.layout:
            logger.warning(
                f"{self.layout.label} is not offered for {self.output_format.display_name}; using {layout.label}"
            )
        if container is not self.container:
            logger.info(
                f"{self.container.display_name} is not compatible with {self.output_format.display_name}; "
                f"using {container.display_name}"
            )
        return replace(self, layout=layout, container=container)


class Upmixer:
    def __init__(
        self,
        queue: Optional[FileQueue] = None,
        *,
        encoder_path: Optional[str],
        runner: Optional[ProcessRunner] = None,
        separator: Optional[StemSeparator] = None,
        bus: Optional[EventBus] = None,
        scratch_root: Optional[Union[str, Path]] = None,
        kill_after: Optional[float] = None,
    ) -> None:
        self.queue = queue if queue is not None else FileQueue()
        self.encoder_path = encoder_path
        self._stop = threading.Event()
        self.runner = runner if runner is not None else ProcessRunner(kill_after=kill_after, stop_event=self._stop)
        self.separator = separator if separator is not None else StemSeparator(self.runner)
        self.bus = bus if bus is not None else EventBus()
        self.scratch_root = str(scratch_root) if scratch_root else None

        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._progress = 0.0
        self._status = STATUS_READY
        self._error: Optional[str] = None
        self._completed = 0
        self._total = 0

    @classmethod
    def from_settings(cls, cfg, *, queue: Optional[FileQueue] = None, bus: Optional[EventBus] = None) -> "Upmixer":
        """Build an upmixer from `PauSettings`, locating ffmpeg once."""
        from .ffmpeg_check import locate_ffmpeg

        encoder_path = locate_ffmpeg(cfg.ffmpeg_path)
        if encoder_path:
            logger.info(f"ffmpeg: {encoder_path}")
        else:
            logger.warning("ffmpeg not found - install ffmpeg or set ffmpeg_path")
        up = cls(
            queue,
            encoder_path=encoder_path,
            bus=bus,
            scratch_root=cfg.scratch_dir,
            kill_after=cfg.cancel_kill_after_s,
        )
        up.separator = StemSeparator(up.runner, command=cfg.separator_cmd, model=cfg.separator_model)
        return up

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def cancel_requested(self) -> bool:
        return self._stop.is_set()

    def snapshot(self) -> RunSnapshot:
        with self._lock:
            return RunSnapshot(
                running=self._running,
                progress=self._progress,
                status=self._status,
                error=self._error,
                completed=self._completed,
                total=self._total,
                jobs=self.queue.jobs(),
            )

    def _publish(self) -> None:
        self.bus.publish(self.snapshot())

    def _set_status(self, message: str) -> None:
        with self._lock:
            self._status = message
        self._publish()

    def _reset_status(self) -> None:
        with self._lock:
            self._progress = 0.0
            self._status = STATUS_READY
            self._error = None
            self._completed = 0
            self._total = 0

    def _handle_error(self, err: BaseException) -> None:
        msg = err.user_message if isinstance(err, UpmixError) else str(err)
        with self._lock:
            self._error = msg
            self._status = STATUS_ERROR
        logger.error(msg)

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def add_file(self, source: Union[str, Path, ResourceHandle]) -> Optional[Job]:
        handle = source if isinstance(source, ResourceHandle) else ResourceHandle(source)
        job = self.queue.enqueue(handle)
        if job is None:
            logger.debug(f"Already queued: {handle.display_name}")
        self._publish()
        return job

    def clear_files(self) -> None:
        self.queue.clear()
        self._reset_status()
        self._publish()

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    def preflight(self, config: RunConfig) -> None:
        """Raise the first unmet precondition for starting a Run."""
        if self.is_running or self.queue.run_active:
            raise RunActive()
        if not self.queue.pending():
            raise QueueEmpty()
        if not self.encoder_path:
            raise EncoderUnavailable()
        if config.output_dir is None:
            raise OutputDirectoryUnset()
        if not fits_container(config.layout, config.container):
            logger.warning(
                f"{config.container.display_name} holds at most "
                f"{container_max_channels(config.container)} channels; "
                f"{config.layout.label} needs {config.layout.channels}, ffmpeg will likely reject it"
            )

    def _begin(self, config: RunConfig) -> Tuple[Job, ...]:
        try:
            self.preflight(config)
        except RunActive:
            raise
        except UpmixError as e:
            self._handle_error(e)
            self._publish()
            raise
        self.queue.begin_run()
        self._stop.clear()
        jobs = self.queue.pending()
        with self._lock:
            self._running = True
            self._reset_status()
            self._status = STATUS_STARTING
            self._total = len(jobs)
        run_id = bind_run()
        log_event(
            "run_start",
            run_id=run_id,
            files=len(jobs),
            format=config.output_format.value,
            layout=config.layout.label,
            container=config.container.value,
            quality=config.quality.value,
            ai_mode=config.ai_mode,
        )
        self._publish()
        return jobs

    def run(self, config: RunConfig) -> RunSnapshot:
        """Run every pending job on the calling thread; returns the final snapshot.

        Precondition failures raise before any job starts.
        """
        config = config.resolve()
        jobs = self._begin(config)
        self._run_body(jobs, config)
        return self.snapshot()

    def start(self, config: RunConfig) -> threading.Thread:
        """Like `run` but on a background thread. Preconditions are checked here."""
        config = config.resolve()
        jobs = self._begin(config)
        t = threading.Thread(target=self._run_body, args=(jobs, config), name="pau-run", daemon=True)
        self._thread = t
        t.start()
        return t

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the background Run; True when no Run thread is alive."""
        t = self._thread
        if t is None:
            return True
        t.join(timeout)
        return not t.is_alive()

    def cancel(self) -> None:
        """Request cancellation and terminate the in-flight process.

        Observed at the next job boundary; the in-flight job becomes Cancelled.
        """
        if not self.is_running:
            return
        self._stop.set()
        terminated = self.runner.terminate()
        log_event("cancel", level="WARNING", msg="Cancelling...", terminated=terminated)

    def _run_body(self, jobs: Sequence[Job], config: RunConfig) -> None:
        try:
            self._process_files(jobs, config)
        except Exception as e:
            logger.exception("Unexpected error during run")
            self._handle_error(e)
            self._fail_in_flight(jobs, str(e))
        finally:
            self._finish()

    def _fail_in_flight(self, jobs: Sequence[Job], reason: str) -> None:
        for job in jobs:
            if self.queue.get(job.id).status is JobStatus.PROCESSING:
                self._update_job(job, JobStatus.FAILED, reason=reason)

    def _finish(self) -> None:
        self.queue.end_run()
        with self._lock:
            self._running = False
            cancelled = self._stop.is_set()
            if self._error is None and self._status != STATUS_CANCELLED:
                self._status = STATUS_COMPLETE
            summary = (self._completed, self._total, self._status)
        log_event("run_done", completed=summary[0], total=summary[1], status=summary[2], cancelled=cancelled)
        self._publish()

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def _process_files(self, jobs: Sequence[Job], config: RunConfig) -> None:
        total = len(jobs)
        for i, job in enumerate(jobs):
            if self._stop.is_set():
                self._handle_cancellation(jobs[i:])
                return
            try:
                self._process_one(job, config)
            except Cancelled:
                self._handle_cancellation(jobs[i:])
                return
            except (AccessDenied, SubprocessFailed, OSError) as e:
                reason = e.reason if isinstance(e, SubprocessFailed) else str(e)
                self._handle_error(e)
                self._update_job(job, JobStatus.FAILED, reason=reason)
                log_event(
                    "job_done",
                    level="ERROR",
                    msg=f"Failed: {job.display_name}",
                    file=job.display_name,
                    status="failed",
                    reason=truncate(reason),
                )
                self._advance(i + 1, total)
                return
            log_event("job_done", file=job.display_name, status="ok")
            self._advance(i + 1, total)

    def _process_one(self, job: Job, config: RunConfig) -> None:
        with job.source.access() as src:
            self._update_job(job, JobStatus.PROCESSING, message=status_upmixing(job.display_name))
            log_event("job_start", file=job.display_name)
            params = encoding_params(config.output_format, config.container, config.quality)
            if config.uses_stems and self._try_stem_mix(job, src, config, params):
                self._update_job(job, JobStatus.UPMIXED)
                return
            spec = build(config.output_format, config.layout, config.quality, ai_mode=False)
            with self._output_dir(config).access() as out_dir:
                dest = output_path_for(out_dir, job.display_name, config.layout.label, config.container.extension)
                cmd = build_upmix_cmd(self.encoder_path, src, dest, spec, params)
                self._encode(cmd, job)
        self._update_job(job, JobStatus.UPMIXED)

    def _try_stem_mix(self, job: Job, src: Path, config: RunConfig, params) -> bool:
        """Two-stage path. False means "fall back to the single-stage chain"."""
        try:
            scratch = Path(tempfile.mkdtemp(prefix="pau-stems-", dir=self.scratch_root))
        except OSError as e:
            self._fallback(job, f"scratch directory: {e}")
            return False
        try:
            self._set_status(STATUS_SEPARATING)
            try:
                stems = self.separator.separate(src, scratch)
            except SeparationUnavailable as e:
                if self._stop.is_set():
                    raise Cancelled() from e
                self._fallback(job, str(e))
                return False
            if self._stop.is_set():
                raise Cancelled()
            spec = build(config.output_format, config.layout, config.quality, ai_mode=True)
            self._set_status(status_upmixing(job.display_name))
            with self._output_dir(config).access() as out_dir:
                dest = output_path_for(out_dir, job.display_name, config.layout.label, config.container.extension)
                cmd = build_stem_mix_cmd(self.encoder_path, list(stems.values()), dest, spec, params)
                self._encode(cmd, job)
            return True
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    def _fallback(self, job: Job, reason: str) -> None:
        log_event(
            "fallback",
            level="WARNING",
            msg=f"Stem separation unavailable for {job.display_name}: {reason}",
            file=job.display_name,
        )
        self._set_status(status_fallback(job.display_name))

    def _encode(self, cmd: List[str], job: Job) -> None:
        log_event("encode", level="DEBUG", msg=cmd_to_string(cmd), file=job.display_name)
        rc, err = self.runner.run(cmd)
        if rc == 0:
            return
        if self._stop.is_set():
            raise Cancelled()
        raise SubprocessFailed(err if err.strip() else f"ffmpeg exited with code {rc}", rc)

    @staticmethod
    def _output_dir(config: RunConfig) -> ResourceHandle:
        if config.output_dir is None:
            raise OutputDirectoryUnset()
        return config.output_dir

    def _update_job(
        self,
        job: Job,
        status: JobStatus,
        *,
        reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        with self._lock:
            self.queue.update_status(job.id, status, reason)
            if message is not None:
                self._status = message
        self._publish()

    def _advance(self, done: int, total: int) -> None:
        with self._lock:
            self._completed = done
            self._progress = done / total if total else 1.0
        self._publish()

    def _handle_cancellation(self, remaining: Sequence[Job]) -> None:
        with self._lock:
            for job in remaining:
                if not self.queue.get(job.id).status.is_terminal:
                    self.queue.update_status(job.id, JobStatus.CANCELLED)
            self._status = STATUS_CANCELLED
            self._progress = 1.0
        log_event("cancelled", level="WARNING", msg=STATUS_CANCELLED, remaining=len(remaining))
        self._publish()

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def plan(self, config: RunConfig) -> List[Tuple[Job, List[str]]]:
        """Commands a Run would execute, without running anything.

        Stem-mix entries reference the separator's output names under a
        placeholder scratch directory.
        """
        config = config.resolve()
        if not self.encoder_path:
            raise EncoderUnavailable()
        out_handle = self._output_dir(config)
        params = encoding_params(config.output_format, config.container, config.quality)
        spec = build(config.output_format, config.layout, config.quality, config.ai_mode)
        result: List[Tuple[Job, List[str]]] = []
        with out_handle.access() as out_dir:
            for job in self.queue.pending():
                dest = output_path_for(out_dir, job.display_name, config.layout.label, config.container.extension)
                if spec.is_stem_mix:
                    stems = self.separator.expected_stems(Path("<scratch>"))
                    cmd = build_stem_mix_cmd(self.encoder_path, list(stems.values()), dest, spec, params)
                else:
                    cmd = build_upmix_cmd(self.encoder_path, Path(job.source.identity), dest, spec, params)
                result.append((job, cmd))
        return result
