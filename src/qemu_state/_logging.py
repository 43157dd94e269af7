"""Logging for qemu-state.

stdout carries the mirrored guest console, so log records only ever go to
stderr.  As a library, ``qemu_state`` installs nothing but a NullHandler;
get-qemu-state calls configure_logging() at startup and shutdown_logging()
before exiting.

Line format:
    INFO [2026-02-25 10:02:54] qemu_state.coordinator - Detected marker ...

Records are handed to a listener thread through a bounded queue and dropped
when it is full, so a stalled stderr never holds up the console reader.

QEMU_STATE_LOG_LEVEL (DEBUG, INFO, WARNING, ERROR) sets the initial level.
"""

import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "qemu_state"

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_QUEUE_CAPACITY = 1024

_LEVEL_STYLES: dict[int, dict[str, object]] = {
    logging.DEBUG: {"dim": True},
    logging.INFO: {"dim": True},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red", "bold": True},
    logging.CRITICAL: {"fg": "red", "bold": True},
}

_handler: logging.handlers.QueueHandler | None = None
_listener: logging.handlers.QueueListener | None = None


def _level_from_env() -> int | None:
    name = os.environ.get("QEMU_STATE_LOG_LEVEL", "").strip().upper()
    return logging.getLevelNamesMapping().get(name) or None


_library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
_library_logger.addHandler(logging.NullHandler())
if (_env_level := _level_from_env()) is not None:
    _library_logger.setLevel(_env_level)


class _StyledFormatter(logging.Formatter):
    """Colours the whole line by level; click.echo strips it off-TTY."""

    def format(self, record: logging.LogRecord) -> str:
        return click.style(super().format(record), **_LEVEL_STYLES.get(record.levelno, {}))  # type: ignore[arg-type]


class _EchoHandler(logging.Handler):
    """Runs on the listener thread."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except BlockingIOError:
            pass
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _DroppingQueue(queue.Queue):  # type: ignore[type-arg]
    """put_nowait() discards the record instead of raising queue.Full."""

    def put_nowait(self, item: object) -> None:
        try:
            super().put_nowait(item)
        except queue.Full:
            pass


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Start stderr logging for the CLI. Safe to call twice.

    Args:
        level: Explicit level; wins over QEMU_STATE_LOG_LEVEL.
        quiet: Errors only; wins over level.
    """
    global _handler, _listener

    if _handler is None:
        records = _DroppingQueue(maxsize=_QUEUE_CAPACITY)
        target = _EchoHandler()
        target.setFormatter(_StyledFormatter(fmt=_FMT, datefmt=_DATEFMT))
        _listener = logging.handlers.QueueListener(records, target)
        _listener.start()
        _handler = logging.handlers.QueueHandler(records)
        _library_logger.addHandler(_handler)

    if quiet:
        _library_logger.setLevel(logging.ERROR)
    elif level is not None:
        _library_logger.setLevel(level)
    elif _library_logger.level == logging.NOTSET:
        _library_logger.setLevel(logging.INFO)


def shutdown_logging() -> None:
    """Write out queued records and detach the stderr handler."""
    global _handler, _listener

    if _handler is not None:
        _library_logger.removeHandler(_handler)
        _handler.close()
        _handler = None
    if _listener is not None:
        _listener.stop()
        _listener = None
