"""Snapshot channel from the orchestrator to any presentation layer.

The orchestrator publishes an immutable `RunSnapshot` after each state change.
Subscribers are called on the publishing thread, in subscription order; a GUI
should hop to its own thread (e.g. through a Qt signal) before touching widgets.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from loguru import logger

from .jobs import Job, JobStatus


@dataclass(frozen=True)
class RunSnapshot:
    running: bool
    progress: float
    status: str
    error: Optional[str]
    completed: int
    total: int
    jobs: Tuple[Job, ...]

    def job_status(self, job_id: str) -> Optional[JobStatus]:
        for job in self.jobs:
            if job.id == job_id:
                return job.status
        return None


Subscriber = Callable[[RunSnapshot], None]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register `fn`; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers.append(fn)

        def _unsubscribe() -> None:
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return _unsubscribe

    def publish(self, snapshot: RunSnapshot) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for fn in subscribers:
            try:
                fn(snapshot)
            except Exception:
                # A broken observer must not stop the run.
                logger.exception("Snapshot subscriber raised")
