"""PID-reuse safe process handle for the QEMU child.

Wraps asyncio.subprocess.Process with psutil.Process so a kill issued after
QEMU already exited (and its PID was possibly recycled) never hits an
unrelated process.
"""

import asyncio
import contextlib

import psutil


class ProcessWrapper:
    """QEMU child handle: asyncio pipes plus a psutil identity for signalling.

    Exposes the pipes the capture protocol needs: stdin (monitor commands)
    and stdout (guest console).  stderr is inherited by the child and never
    appears here.
    """

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self.proc = proc
        self.identity: psutil.Process | None = None

        if proc.pid:
            # Snapshot the identity now; psutil.Process remembers the create time
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.identity = psutil.Process(proc.pid)

    async def is_running(self) -> bool:
        """True while QEMU has not been reaped and its PID still names it.

        The psutil check runs in a worker thread; a stuck /proc read must not
        stall the console reader.
        """
        if self.proc.returncode is not None:
            return False
        if self.identity is None:
            return True
        try:
            return await asyncio.to_thread(self.identity.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    @property
    def pid(self) -> int | None:
        return self.proc.pid

    @property
    def returncode(self) -> int | None:
        """Exit code once reaped; negative for a signal."""
        return self.proc.returncode

    @property
    def stdin(self) -> asyncio.StreamWriter | None:
        """Monitor command channel."""
        return self.proc.stdin

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        """Guest console output."""
        return self.proc.stdout

    async def wait(self) -> int:
        return await self.proc.wait()

    async def kill(self) -> None:
        """SIGKILL QEMU. A no-op once it has exited or its PID was reused."""
        if not await self.is_running():
            return
        if self.identity is not None:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.identity.kill)
            return
        with contextlib.suppress(ProcessLookupError):
            self.proc.kill()
