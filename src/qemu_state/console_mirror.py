"""Passthrough sink for the guest console.

Mirroring is for humans watching the boot; it never affects the run.  A
failing sink (closed stdout, full disk behind a redirect) is logged once
and then disabled.
"""

from __future__ import annotations

import sys
from typing import IO

from qemu_state._logging import get_logger

logger = get_logger(__name__)


class ConsoleMirror:
    """Copies console bytes to a binary sink (default: our own stdout)."""

    __slots__ = ("_bytes_written", "_disabled", "_sink")

    def __init__(self, sink: IO[bytes] | None = None) -> None:
        self._sink = sink if sink is not None else sys.stdout.buffer
        self._bytes_written = 0
        self._disabled = False

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def write(self, data: bytes) -> None:
        if not data or self._disabled:
            return
        try:
            self._sink.write(data)
            self._sink.flush()
        except (OSError, ValueError) as e:
            # ValueError: write to a closed file object
            self._disabled = True
            logger.warning("Console mirror disabled after write failure: %s", e, extra={"error": str(e)})
            return
        self._bytes_written += len(data)
