"""Logging and progress utilities for velobuild.

All progress and log output goes to stderr so stdout stays clean for the
machine-readable BuildResult.
"""

import json
import sys
import threading
from datetime import UTC, datetime
from typing import Any, Literal, TextIO

from velobuild.models.build import ProgressEvent

_verbose = False
_quiet = False
_log_format: Literal["text", "json"] = "text"
_lock = threading.Lock()


def set_verbose(verbose: bool) -> None:
    """Set verbose mode."""
    global _verbose
    _verbose = verbose


def configure_logging(
    log_format: Literal["text", "json"] = "text",
    quiet: bool = False,
) -> None:
    """Configure logging settings.

    Args:
        log_format: Output format for log messages
        quiet: Suppress progress and info output
    """
    global _log_format, _quiet
    _log_format = log_format
    _quiet = quiet


def log(
    message: str,
    level: Literal["debug", "info", "warning", "error"] = "info",
    **context: Any,
) -> None:
    """Log a message to stderr.

    Fetch workers log from several threads, so writes are serialized.

    Args:
        message: Log message
        level: Log level
        **context: Additional context to include (tool, url, path, ...)
    """
    if _quiet and level in ("debug", "info"):
        return

    if level == "debug" and not _verbose:
        return

    if _log_format == "json":
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "message": message,
            **context,
        }
        line = json.dumps(log_entry, default=str)
    else:
        suffix = ""
        if context and _verbose:
            suffix = " " + " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        prefix = f"[{level.upper()}] " if level != "info" else ""
        line = f"{prefix}{message}{suffix}"

    with _lock:
        print(line, file=sys.stderr)


def debug(message: str, **context: Any) -> None:
    """Log a debug message."""
    log(message, level="debug", **context)


def info(message: str, **context: Any) -> None:
    """Log an info message."""
    log(message, level="info", **context)


def warning(message: str, **context: Any) -> None:
    """Log a warning message."""
    log(message, level="warning", **context)


def error(message: str, **context: Any) -> None:
    """Log an error message."""
    log(message, level="error", **context)


class ProgressReporter:
    """Renders ProgressEvents to stderr.

    Passed to the engine as its progress callback by the CLI; GUI callers
    supply their own callable instead.
    """

    _MARKS = {
        "loaded": "+",
        "verified": "+",
        "cached": "+",
        "written": "+",
        "unverified": "?",
        "skipped": "-",
        "hash_mismatch": "!",
        "unreachable": "!",
        "failed": "!",
    }

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)
        if _quiet:
            return
        stream = self.stream or sys.stderr

        if _log_format == "json":
            line = json.dumps({"progress": event.model_dump(mode="json")})
        else:
            mark = self._MARKS.get(event.status, " ")
            detail = f" - {event.message}" if event.message else ""
            line = f"[{event.phase.value:>8}] {mark} {event.item}: {event.status}{detail}"

        with _lock:
            print(line, file=stream)

    def counts(self) -> dict[str, int]:
        """Count rendered events per status."""
        totals: dict[str, int] = {}
        for event in self.events:
            totals[event.status] = totals.get(event.status, 0) + 1
        return totals


def format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"
