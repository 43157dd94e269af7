"""Heartbeat logging while a capture run is in flight."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from qemu_state._logging import get_logger
from qemu_state.models import RunState

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

_WAITING_FOR: dict[RunState, str] = {
    RunState.BOOTING: "marker",
    RunState.MARKER_DETECTED: "monitor",
    RunState.MIGRATING: "state file",
    RunState.STATE_FILE_OBSERVED: "quit",
    RunState.QUITTING: "QEMU exit",
}


class ProgressReporter:
    """Logs elapsed time every ``interval`` seconds until cancelled.

    Read-only: it samples the run through callables and never touches the
    process or the pipes.
    """

    __slots__ = ("_bytes_read", "_clock", "_interval", "_started_at", "_state", "beats")

    def __init__(
        self,
        interval: float,
        *,
        started_at: float,
        clock: Callable[[], float],
        state: Callable[[], RunState],
        bytes_read: Callable[[], int],
    ) -> None:
        self._interval = interval
        self._started_at = started_at
        self._clock = clock
        self._state = state
        self._bytes_read = bytes_read
        self.beats = 0

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            state = self._state()
            if state.is_terminal:
                return
            self.beats += 1
            elapsed = self._clock() - self._started_at
            logger.info(
                "Still waiting for %s... (elapsed: %ds, bytes read: %d)",
                _WAITING_FOR.get(state, state.value),
                round(elapsed),
                self._bytes_read(),
                extra={"elapsed_seconds": elapsed, "state": state.value, "bytes_read": self._bytes_read()},
            )
