"""Exception hierarchy for qemu-state.

All exceptions inherit from StateCaptureError. Each class carries a ``kind``
string used in error reports and log lines.

Hierarchy:
    StateCaptureError (base)
    ├── ConfigError              ← args JSON missing/invalid, empty output path
    ├── ProcessStartError        ← QEMU binary missing or not executable
    ├── StreamError              ← console EOF/read failure, broken monitor pipe
    ├── VmProcessDiedError       ← QEMU exited before quit was sent
    ├── CaptureTimeoutError      ← deadline reached before the run completed
    └── FilesystemError          ← state file stat failed (other than ENOENT)

A QEMU exit after quit was sent is not an exception: the coordinator only
logs it.
"""

from __future__ import annotations

from typing import Any, ClassVar


class StateCaptureError(Exception):
    """Base exception for capture errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging
    """

    kind: ClassVar[str] = "error"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigError(StateCaptureError):
    """Invalid configuration, detected before any process is spawned."""

    kind = "config"


class ProcessStartError(StateCaptureError):
    """QEMU could not be started (missing binary, permission denied)."""

    kind = "process_start"


class StreamError(StateCaptureError):
    """Reading the console or writing the monitor channel failed.

    Raised on EOF before the marker, on read errors, and on broken pipes
    while sending monitor commands (the child has died or closed stdin).
    """

    kind = "stream"


class VmProcessDiedError(StateCaptureError):
    """QEMU exited while the run was still active (before quit was sent).

    Attributes:
        exit_code: Process exit code (negative for signals)
    """

    kind = "process_died"

    def __init__(self, message: str, exit_code: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx["exit_code"] = exit_code
        super().__init__(message, ctx)
        self.exit_code = exit_code


class CaptureTimeoutError(StateCaptureError):
    """The run deadline elapsed before the snapshot completed.

    Attributes:
        elapsed_seconds: Wall time since the run started
        bytes_read: Console bytes read from QEMU before the deadline
    """

    kind = "timeout"

    def __init__(
        self,
        message: str,
        elapsed_seconds: float,
        bytes_read: int,
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"elapsed_seconds": elapsed_seconds, "bytes_read": bytes_read})
        super().__init__(message, ctx)
        self.elapsed_seconds = elapsed_seconds
        self.bytes_read = bytes_read


class FilesystemError(StateCaptureError):
    """Checking for the state file failed with something other than not-found."""

    kind = "filesystem"
