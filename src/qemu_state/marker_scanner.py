"""Console marker detection.

The guest prints a run of identical bytes (default ``==========``) once it
has booted far enough to be worth snapshotting.  MarkerScanner pulls QEMU's
stdout from process start, counts consecutive marker bytes and forwards
everything else to the ConsoleMirror.

Rules:
- A marker byte extends the current run; any other byte ends it.
- Marker bytes of a run that ends short of ``run_length`` were ordinary
  console output after all: they are forwarded, in order, ahead of the byte
  that broke the run.
- The bytes of the completed run are never forwarded, so the sentinel does
  not show up in the mirrored console log.
- Detection fires once.  Afterwards the scanner copies bytes unconditionally,
  including later marker bytes.

Reads are batched; the run counter lives on the instance, so a run split
across read calls is still recognised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from qemu_state import constants
from qemu_state._logging import get_logger
from qemu_state.exceptions import StreamError

if TYPE_CHECKING:
    from qemu_state.console_mirror import ConsoleMirror
    from qemu_state.models import MarkerPattern

logger = get_logger(__name__)


class MarkerScanner:
    """Single-use scanner for one QEMU console stream.

    Attributes:
        detected: Set exactly once, when the marker run completes
    """

    __slots__ = (
        "_bytes_read",
        "_chunk_size",
        "_marker_offset",
        "_matched",
        "_mirror",
        "_pattern",
        "_run",
        "detected",
    )

    def __init__(
        self,
        pattern: MarkerPattern,
        mirror: ConsoleMirror,
        *,
        chunk_size: int = constants.CONSOLE_READ_CHUNK_BYTES,
    ) -> None:
        self._pattern = pattern
        self._mirror = mirror
        self._chunk_size = chunk_size
        self._run = 0
        self._matched = False
        self._bytes_read = 0
        self._marker_offset: int | None = None
        self.detected = asyncio.Event()

    @property
    def bytes_read(self) -> int:
        """Console bytes consumed so far (marker bytes included)."""
        return self._bytes_read

    @property
    def marker_offset(self) -> int | None:
        """Number of bytes read up to and including the last marker byte, once detected."""
        return self._marker_offset

    def feed(self, chunk: bytes) -> bytes:
        """Advance the state machine over ``chunk``; return the bytes to mirror."""
        if self._matched:
            self._bytes_read += len(chunk)
            return chunk

        marker = self._pattern.byte
        forward = bytearray()
        for index, byte in enumerate(chunk):
            if byte == marker:
                self._run += 1
                if self._run == self._pattern.run_length:
                    self._matched = True
                    self._run = 0
                    self._marker_offset = self._bytes_read + index + 1
                    forward += chunk[index + 1 :]
                    break
                continue
            if self._run:
                forward += bytes((marker,)) * self._run
                self._run = 0
            forward.append(byte)

        self._bytes_read += len(chunk)
        return bytes(forward)

    def flush_pending(self) -> bytes:
        """Release marker bytes of an unfinished run (used at EOF)."""
        pending = bytes((self._pattern.byte,)) * self._run
        self._run = 0
        return pending

    async def run(self, reader: asyncio.StreamReader) -> None:
        """Scan until the marker appears, then mirror the rest until EOF.

        Raises:
            StreamError: Read failure, or EOF before the marker was seen
        """
        await self._scan(reader)
        await self._copy(reader)

    async def _scan(self, reader: asyncio.StreamReader) -> None:
        while not self._matched:
            chunk = await self._read(reader)
            if not chunk:
                self._mirror.write(self.flush_pending())
                raise StreamError(
                    f"QEMU console closed before marker '{self._pattern}' (read {self._bytes_read} bytes)",
                    context={"bytes_read": self._bytes_read},
                )

            self._mirror.write(self.feed(chunk))

        self.detected.set()
        logger.info(
            "Detected marker '%s' (read %d bytes)",
            self._pattern,
            self._marker_offset,
            extra={"bytes_read": self._marker_offset, "marker": str(self._pattern)},
        )

    async def _copy(self, reader: asyncio.StreamReader) -> None:
        while chunk := await self._read(reader):
            self._mirror.write(self.feed(chunk))
        logger.debug("QEMU console reached EOF", extra={"bytes_read": self._bytes_read})

    async def _read(self, reader: asyncio.StreamReader) -> bytes:
        try:
            return await reader.read(self._chunk_size)
        except OSError as e:
            raise StreamError(
                f"failed to read QEMU console: {e}",
                context={"bytes_read": self._bytes_read},
            ) from e
