"""Exception types for the upmixing pipeline.

Precondition errors (`EncoderUnavailable`, `OutputDirectoryUnset`) stop a Run
before any job starts. Job errors (`AccessDenied`, `SubprocessFailed`) mark the
offending job Failed and stop the Run. `SeparationUnavailable` never leaves the
orchestrator: it selects the single-stage fallback for one job.

All exceptions inherit from `UpmixError`.
"""
from __future__ import annotations


class UpmixError(Exception):
    """Base class for all errors raised by the upmixer."""

    @property
    def user_message(self) -> str:
        return str(self)


class EncoderUnavailable(UpmixError):
    """ffmpeg could not be located at startup."""

    def __init__(self, message: str = "FFmpeg executable not found. Install ffmpeg or set ffmpeg_path.") -> None:
        super().__init__(message)


class OutputDirectoryUnset(UpmixError):
    """A Run was requested without an output directory."""

    def __init__(self, message: str = "Please select an output directory first.") -> None:
        super().__init__(message)


class AccessDenied(UpmixError):
    """A file or directory handle could not be acquired."""

    def __init__(self, target: str, detail: str = "") -> None:
        self.target = target
        self.detail = detail
        msg = f"Could not access {target}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class SubprocessFailed(UpmixError):
    """An external process exited non-zero outside of cancellation.

    `reason` holds the captured standard error verbatim.
    """

    def __init__(self, reason: str, returncode: int | None = None) -> None:
        self.reason = reason
        self.returncode = returncode
        super().__init__(f"The upmix operation failed: {reason}")


class Cancelled(UpmixError):
    """The operation was intentionally aborted."""

    def __init__(self, message: str = "The upmix operation was cancelled.") -> None:
        super().__init__(message)


class SeparationUnavailable(UpmixError):
    """The stem separation stage failed or produced incomplete output."""


class RunActive(UpmixError):
    """The queue cannot be changed, or a Run started, while a Run is active."""

    def __init__(self, message: str = "An upmix run is already in progress.") -> None:
        super().__init__(message)


class QueueEmpty(UpmixError):
    """A Run was requested with nothing queued."""

    def __init__(self, message: str = "No files queued for upmixing.") -> None:
        super().__init__(message)


class InvalidTransition(UpmixError):
    """A job status change that the lifecycle does not allow."""
