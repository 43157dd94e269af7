"""Migrate-to-file over QEMU's multiplexed stdio monitor.

QEMU started with ``-serial mon:stdio`` (or ``-nographic``) shares one stdio
between the guest serial console and the HMP monitor; Ctrl-A C toggles
between them.  Once the console marker is seen:

1. write ``\\x01c`` to switch stdin from the guest console to the monitor
2. write ``migrate file:<path>``, wait one poll interval, stat the path;
   repeat until the file exists (only the run deadline bounds this loop)
3. write ``quit``

Unlike the QMP save path there is no reply to parse: the monitor echoes
into the same stdout the scanner is mirroring, so the state file appearing
on disk is the completion signal.

The trigger is the only writer of QEMU's stdin and never writes before the
detection event is set.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import aiofiles.os

from qemu_state import constants
from qemu_state._logging import get_logger
from qemu_state.exceptions import FilesystemError, StreamError
from qemu_state.models import RunState

if TYPE_CHECKING:
    from collections.abc import Callable

    from qemu_state.models import SnapshotRequest

logger = get_logger(__name__)


class SnapshotTrigger:
    """Drives QEMU's monitor from marker detection to quit.

    Attributes:
        request: Output path and poll interval
    """

    __slots__ = (
        "_detected",
        "_migrate_attempts",
        "_on_state_change",
        "_quit_sent",
        "_writer",
        "request",
    )

    def __init__(
        self,
        request: SnapshotRequest,
        writer: asyncio.StreamWriter,
        detected: asyncio.Event,
        *,
        on_state_change: Callable[[RunState], None] | None = None,
    ) -> None:
        self.request = request
        self._writer = writer
        self._detected = detected
        self._on_state_change = on_state_change
        self._migrate_attempts = 0
        self._quit_sent = False

    @property
    def migrate_attempts(self) -> int:
        return self._migrate_attempts

    @property
    def quit_sent(self) -> bool:
        """True from the moment the quit command is about to be written."""
        return self._quit_sent

    async def run(self) -> int:
        """Wait for the marker, migrate, quit.

        Returns:
            Size of the state file in bytes when it was first observed

        Raises:
            StreamError: stdin write failed (QEMU died or closed the pipe)
            FilesystemError: stat on the state file failed with other than ENOENT
        """
        await self._detected.wait()
        self._transition(RunState.MARKER_DETECTED)

        logger.info("Entering QEMU monitor mode (Ctrl-A C)")
        await self._send(constants.MONITOR_ESCAPE_SEQUENCE, "start monitor")
        self._transition(RunState.MIGRATING)

        path = self.request.output_path
        logger.info("Sending migrate command: migrate file:%s", path, extra={"output_path": str(path)})
        while True:
            await self._send(self.request.migrate_command, "invoke migrate")
            self._migrate_attempts += 1
            await asyncio.sleep(self.request.poll_interval_seconds)

            size = await self._state_file_size()
            if size is not None:
                break
            logger.debug(
                "State file not present yet, re-sending migrate",
                extra={"output_path": str(path), "attempts": self._migrate_attempts},
            )

        logger.info(
            "State file created: %s (%d bytes)",
            path,
            size,
            extra={"output_path": str(path), "size": size, "attempts": self._migrate_attempts},
        )
        self._transition(RunState.STATE_FILE_OBSERVED)

        logger.info("Finishing QEMU (sending quit)")
        self._quit_sent = True
        self._transition(RunState.QUITTING)
        await self._send(constants.QUIT_COMMAND, "invoke quit")
        return size

    async def _send(self, data: bytes, action: str) -> None:
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise StreamError(
                f"failed to {action}: {e}",
                context={"action": action, "migrate_attempts": self._migrate_attempts},
            ) from e

    async def _state_file_size(self) -> int | None:
        path = self.request.output_path
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FilesystemError(
                f"failed to stat state file {path}: {e.strerror or e}",
                context={"output_path": str(path), "errno": e.errno},
            ) from e
        return stat.st_size

    def _transition(self, state: RunState) -> None:
        if self._on_state_change is not None:
            self._on_state_change(state)
