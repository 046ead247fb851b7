"""Loguru sinks and structured run events.

Every Run binds a ``run_id``; `log_event` attaches an ``action`` plus arbitrary
fields (file, status, reason, ...) so the JSON sink can be filtered per job.
"""
from __future__ import annotations
import sys
import uuid
from typing import Optional, Any, Dict
from loguru import logger

TRUNCATED_MARKER = "... (truncated)"
QT_FORMAT = "<level>{level: <8}</level> | <green>{time:HH:mm:ss}</green> | <cyan>{message}</cyan>"


def setup_console(level: str = "INFO", json_path: Optional[str] = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), enqueue=True, backtrace=False, diagnose=False)
    if json_path:
        setup_json(json_path)


def setup_json(path: str, level: str = "DEBUG") -> None:
    logger.add(path, level=level.upper(), serialize=True, enqueue=True)


def setup_qt_sink(emitter, level: str = "INFO", json_path: Optional[str] = None) -> None:
    """Send log lines to `emitter.message` (a Qt signal) as well as stderr.

    The sink runs on loguru's worker thread; Qt queues the signal to the GUI thread.
    """
    logger.remove()

    def qt_sink(msg: "loguru.Message"):
        emitter.message.emit(str(msg.record["message"]).rstrip())

    logger.add(qt_sink, level=level.upper(), format=QT_FORMAT, enqueue=True, catch=True)
    logger.add(sys.stderr, level=level.upper(), format=QT_FORMAT, enqueue=True, backtrace=False, diagnose=False)
    if json_path:
        setup_json(json_path)


def bind_run(run_id: Optional[str] = None) -> str:
    rid = run_id or uuid.uuid4().hex[:12]
    # Applies the run id to every record, including other threads.
    logger.configure(extra={"run_id": rid})
    return rid


def get_logger():
    """The shared loguru logger, for callers that do not import loguru themselves."""
    return logger


def log_event(action: str, **fields: Any) -> None:
    # "msg" and "level" are consumed here; None fields are dropped
    clean: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    msg = clean.pop("msg", action)
    level = clean.pop("level", "INFO").upper()
    logger.bind(action=action, **clean).log(level, msg)


def truncate(text: str, max_len: int = 4096, max_lines: int = 20) -> str:
    """Shorten captured stderr for a log line.

    Keeps the tail, where ffmpeg prints the actual error.
    """
    if not text:
        return ""
    lines = text.strip().splitlines()
    if len(lines) > max_lines:
        text = "\n".join([TRUNCATED_MARKER] + lines[-max_lines:])

    if len(text) > max_len:
        text = TRUNCATED_MARKER + "\n" + text[-max_len:]
    return text
