"""Shared pytest fixtures for qemu-state tests."""

import json
import logging
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from qemu_state._logging import LIBRARY_LOGGER_NAME, shutdown_logging
from qemu_state.config import CaptureConfig
from qemu_state.models import SnapshotRequest

# ============================================================================
# Fake QEMU
# ============================================================================
# A Python child that speaks just enough of QEMU's multiplexed stdio:
#   - prints boot output and the marker on stdout
#   - appends every stdin line (monitor escape, migrate, quit) to a log file
#   - on "quit", exits with the requested code if the state file exists, 3 otherwise
#
# Modes:
#   wait-for-file  the test creates the state file itself
#   self-migrate   the child writes the state file on the first migrate command
#   silent         never prints the marker
#   crash          exits 1 before the marker
#   close-stdin    prints the marker, then closes its end of the monitor pipe
#   ignore-quit    like self-migrate, but hangs instead of exiting on "quit"

FAKE_QEMU_SOURCE = r"""
import os
import sys
import time

mode, log_path = sys.argv[1], sys.argv[2]
quit_exit_code = int(sys.argv[3]) if len(sys.argv) > 3 else 0
out = sys.stdout.buffer

if mode == "silent":
    out.write(b"booting\n")
    out.flush()
    time.sleep(60)
    sys.exit(0)
if mode == "crash":
    out.write(b"kernel panic\n")
    out.flush()
    sys.exit(1)

out.write(b"boot\n==========\n")
out.flush()

if mode == "close-stdin":
    os.close(0)
    time.sleep(60)
    sys.exit(0)

state_path = None
while True:
    line = sys.stdin.buffer.readline()
    if not line:
        sys.exit(4)
    with open(log_path, "ab") as log:
        log.write(line)
    if b"migrate file:" in line:
        state_path = line.split(b"migrate file:", 1)[1].strip().decode()
        if mode in ("self-migrate", "ignore-quit") and not os.path.exists(state_path):
            with open(state_path, "wb") as state:
                state.write(b"QEVM" + bytes(4092))
    elif line == b"quit\n":
        if mode == "ignore-quit":
            time.sleep(60)
        sys.exit(quit_exit_code if state_path and os.path.exists(state_path) else 3)
"""

FakeQemuArgs = Callable[..., list[str]]


@pytest.fixture
def monitor_log(tmp_path: Path) -> Path:
    """Everything the fake QEMU received on stdin."""
    return tmp_path / "monitor.log"


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "vm.state"


@pytest.fixture
def fake_qemu_args(monitor_log: Path) -> FakeQemuArgs:
    """Build the argument list that turns ``sys.executable`` into a fake QEMU."""

    def _args(mode: str, quit_exit_code: int = 0) -> list[str]:
        return ["-c", FAKE_QEMU_SOURCE, mode, str(monitor_log), str(quit_exit_code)]

    return _args


@pytest.fixture
def make_config(fake_qemu_args: FakeQemuArgs, state_path: Path) -> Callable[..., CaptureConfig]:
    """CaptureConfig for the fake QEMU with test-friendly timings."""

    def _make(mode: str, *, quit_exit_code: int = 0, **overrides: object) -> CaptureConfig:
        fields: dict[str, object] = {
            "qemu_binary": Path(sys.executable),
            "qemu_args": fake_qemu_args(mode, quit_exit_code),
            "snapshot": SnapshotRequest(output_path=state_path, poll_interval_seconds=0.05),
            "timeout_seconds": 10.0,
            "progress_interval_seconds": 0.1,
        }
        fields.update(overrides)
        return CaptureConfig.model_validate(fields)

    return _make


@pytest.fixture
def args_json(tmp_path: Path, fake_qemu_args: FakeQemuArgs) -> Callable[..., Path]:
    """Write a fake-QEMU argument list to a JSON file for the CLI."""

    def _write(mode: str, quit_exit_code: int = 0) -> Path:
        path = tmp_path / "qemu-args.json"
        path.write_text(json.dumps(fake_qemu_args(mode, quit_exit_code)))
        return path

    return _write


# ============================================================================
# Logging isolation
# ============================================================================


@pytest.fixture(autouse=True)
def _restore_library_logger() -> Iterator[None]:
    """configure_logging() mutates a process-wide logger; undo it after each test."""
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    level = lib_logger.level
    yield
    shutdown_logging()
    lib_logger.setLevel(level)
