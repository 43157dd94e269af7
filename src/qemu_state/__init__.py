"""qemu-state: capture a resumable QEMU snapshot at the end of a cold boot.

Boots QEMU with a caller-supplied argument list, watches the guest console
for a marker line (default ``==========``), then switches QEMU's stdio to
the HMP monitor, migrates the VM to a file and quits.  Later runs start
QEMU with ``-incoming file:<path>`` and skip the boot.

Quick Start:
    ```python
    from pathlib import Path

    from qemu_state import CaptureConfig, SnapshotCoordinator, SnapshotRequest

    config = CaptureConfig(
        qemu_binary=Path("/usr/bin/qemu-system-x86_64"),
        qemu_args=["-nographic", "-kernel", "vmlinuz", "-append", "console=ttyS0"],
        snapshot=SnapshotRequest(output_path=Path("vm.state")),
    )
    result = await SnapshotCoordinator(config).run()
    print(result.state_file_bytes, result.elapsed_seconds)
    ```

Command line:
    get-qemu-state --args-json qemu-args.json -o vm.state /usr/bin/qemu-system-x86_64

Requirements:
    - The guest console must be on QEMU's multiplexed stdio
      (``-serial mon:stdio`` or ``-nographic``)
    - Python 3.12+
"""

from qemu_state.config import CaptureConfig, build_config, load_args_file
from qemu_state.console_mirror import ConsoleMirror
from qemu_state.coordinator import SnapshotCoordinator
from qemu_state.exceptions import (
    CaptureTimeoutError,
    ConfigError,
    FilesystemError,
    ProcessStartError,
    StateCaptureError,
    StreamError,
    VmProcessDiedError,
)
from qemu_state.models import CaptureResult, ErrorReport, MarkerPattern, RunState, SnapshotRequest

__all__ = [
    "CaptureConfig",
    "CaptureResult",
    "CaptureTimeoutError",
    "ConfigError",
    "ConsoleMirror",
    "ErrorReport",
    "FilesystemError",
    "MarkerPattern",
    "ProcessStartError",
    "RunState",
    "SnapshotCoordinator",
    "SnapshotRequest",
    "StateCaptureError",
    "StreamError",
    "VmProcessDiedError",
    "build_config",
    "load_args_file",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("qemu-state")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
