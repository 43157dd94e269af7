"""QEMU child process lifecycle: spawn, kill, reap.

The child gets piped stdin (monitor commands) and stdout (guest console).
stderr is inherited so QEMU's own diagnostics reach the terminal untouched.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from qemu_state import constants
from qemu_state._logging import get_logger
from qemu_state.exceptions import ProcessStartError, VmProcessDiedError
from qemu_state.platform_utils import ProcessWrapper

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

logger = get_logger(__name__)


async def start_vm_process(binary: Path, args: Sequence[str]) -> ProcessWrapper:
    """Spawn QEMU with piped stdin/stdout and pass-through stderr.

    Raises:
        ProcessStartError: Binary missing, not executable, or exec failed
    """
    logger.info("Starting QEMU: %s", binary, extra={"binary": str(binary), "qemu_args": list(args)})
    try:
        proc = ProcessWrapper(
            await asyncio.create_subprocess_exec(
                str(binary),
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
            )
        )
    except OSError as e:
        raise ProcessStartError(
            f"failed to start {binary}: {e.strerror or e}",
            context={"binary": str(binary), "errno": e.errno},
        ) from e

    logger.info("QEMU started (PID %s)", proc.pid, extra={"pid": proc.pid})
    return proc


async def kill_vm_process(
    proc: ProcessWrapper,
    reap_timeout: float = constants.PROCESS_REAP_TIMEOUT_SECONDS,
) -> int | None:
    """Kill QEMU and reap it. Idempotent; returns the exit code if reaped.

    QEMU has no cooperative cancel over the console, so SIGKILL is the only
    way to unblock a stuck run.  Never raises.
    """
    if proc.returncode is not None:
        return proc.returncode

    logger.debug("Sending SIGKILL to QEMU", extra={"pid": proc.pid})
    await proc.kill()

    try:
        return await asyncio.wait_for(proc.wait(), timeout=reap_timeout)
    except TimeoutError:
        logger.error(
            "QEMU did not exit within %.1fs of SIGKILL",
            reap_timeout,
            extra={"pid": proc.pid, "reap_timeout": reap_timeout},
        )
        return None


def close_monitor_channel(proc: ProcessWrapper) -> None:
    """Close our end of QEMU's stdin if it is still open."""
    if proc.stdin is not None and not proc.stdin.is_closing():
        with contextlib.suppress(OSError):
            proc.stdin.close()


async def watch_process_exit(proc: ProcessWrapper, quit_sent: Callable[[], bool]) -> int:
    """Wait for QEMU to exit and classify the exit.

    An exit after the quit command is expected whatever the exit code (QEMU
    may report non-zero after a file migration); it is only logged.  Any
    earlier exit means the VM died mid-run.

    Raises:
        VmProcessDiedError: QEMU exited before quit was sent
    """
    exit_code = await proc.wait()
    if quit_sent():
        logger.info("QEMU exited with code %d", exit_code, extra={"pid": proc.pid, "exit_code": exit_code})
        return exit_code
    raise VmProcessDiedError(
        f"QEMU exited unexpectedly with code {exit_code} before the snapshot completed",
        exit_code=exit_code,
        context={"pid": proc.pid},
    )
