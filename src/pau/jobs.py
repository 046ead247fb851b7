"""File queue and per-job status lifecycle.

Jobs move Pending -> Processing -> {Upmixed, Failed, Cancelled}. A Pending job
may also go straight to Failed (its source could not be opened) or Cancelled
(cancellation sweep). Terminal states never change.

`Job` values are immutable snapshots; only the orchestrator changes a job's
status, through `FileQueue.update_status`.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from .errors import InvalidTransition, RunActive
from .handles import ResourceHandle


class JobStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing..."
    UPMIXED = "Upmixed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.UPMIXED, JobStatus.FAILED, JobStatus.CANCELLED)


_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.UPMIXED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.UPMIXED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    return new in _TRANSITIONS[current]


@dataclass(frozen=True)
class Job:
    source: ResourceHandle
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    reason: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.source.display_name


class FileQueue:
    """Ordered, de-duplicated collection of jobs."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: List[Job] = []
        self._run_active = False

    # Public operations -------------------------------------------------

    def enqueue(self, source: ResourceHandle) -> Optional[Job]:
        """Add `source`; returns the new job, or None if it is already queued.

        Raises `RunActive` while a Run is in progress.
        """
        with self._lock:
            if self._run_active:
                raise RunActive("Cannot add files while upmixing.")
            if any(j.source.identity == source.identity for j in self._jobs):
                return None
            job = Job(source=source)
            self._jobs.append(job)
            return job

    def clear(self) -> None:
        with self._lock:
            if self._run_active:
                raise RunActive("Cannot clear the queue while upmixing.")
            self._jobs.clear()

    def jobs(self) -> Tuple[Job, ...]:
        with self._lock:
            return tuple(self._jobs)

    def get(self, job_id: str) -> Job:
        with self._lock:
            for job in self._jobs:
                if job.id == job_id:
                    return job
        raise KeyError(job_id)

    def pending(self) -> Tuple[Job, ...]:
        with self._lock:
            return tuple(j for j in self._jobs if j.status is JobStatus.PENDING)

    @property
    def run_active(self) -> bool:
        with self._lock:
            return self._run_active

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # Orchestrator-only -------------------------------------------------

    def begin_run(self) -> None:
        with self._lock:
            if self._run_active:
                raise RunActive()
            self._run_active = True

    def end_run(self) -> None:
        with self._lock:
            self._run_active = False

    def update_status(self, job_id: str, status: JobStatus, reason: Optional[str] = None) -> Job:
        with self._lock:
            for idx, job in enumerate(self._jobs):
                if job.id != job_id:
                    continue
                if not can_transition(job.status, status):
                    raise InvalidTransition(
                        f"{job.display_name}: {job.status.value} -> {status.value} is not allowed"
                    )
                updated = replace(job, status=status, reason=reason if reason is not None else job.reason)
                self._jobs[idx] = updated
                return updated
        raise KeyError(job_id)
