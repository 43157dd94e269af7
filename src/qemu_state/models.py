"""Data models for qemu-state."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from qemu_state import constants
from qemu_state.exceptions import StateCaptureError


class MarkerPattern(BaseModel):
    """Run of identical bytes that signals "ready to snapshot" on the console."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    byte: int = Field(
        default=constants.DEFAULT_MARKER_BYTE,
        ge=0,
        le=255,
        description="Byte value making up the marker",
    )
    run_length: int = Field(
        default=constants.DEFAULT_MARKER_RUN_LENGTH,
        ge=1,
        description="Consecutive marker bytes required for detection",
    )

    @classmethod
    def from_text(cls, text: str) -> Self:
        """Build a pattern from its printed form, e.g. ``"=========="``.

        Raises:
            ValueError: Empty text, mixed characters, or a non-ASCII character
        """
        if not text:
            raise ValueError("marker must not be empty")
        if len(set(text)) != 1:
            raise ValueError(f"marker must repeat a single character: {text!r}")
        encoded = text[0].encode()
        if len(encoded) != 1:
            raise ValueError(f"marker character must be a single byte: {text[0]!r}")
        return cls(byte=encoded[0], run_length=len(text))

    def __str__(self) -> str:
        return chr(self.byte) * self.run_length


class SnapshotRequest(BaseModel):
    """Where to migrate the VM state and how often to check for it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    output_path: Path = Field(
        default=Path(constants.DEFAULT_OUTPUT_FILE),
        description="State file written by QEMU's migrate command",
    )
    poll_interval_seconds: float = Field(
        default=constants.DEFAULT_POLL_INTERVAL_SECONDS,
        gt=0,
        description="Delay between a migrate command and the existence check",
    )

    @field_validator("output_path", mode="before")
    @classmethod
    def _reject_empty_path(cls, value: object) -> object:
        if isinstance(value, str | Path) and str(value).strip() in ("", "."):
            raise ValueError("output file must not be empty")
        return value

    @property
    def migrate_command(self) -> bytes:
        """HMP ``migrate file:<path>`` line for this request."""
        return constants.MIGRATE_COMMAND_TEMPLATE.format(path=self.output_path).encode()


class RunState(str, Enum):
    """Lifecycle of one capture run. Exactly one terminal state is reached."""

    BOOTING = "booting"
    MARKER_DETECTED = "marker_detected"
    MIGRATING = "migrating"
    STATE_FILE_OBSERVED = "state_file_observed"
    QUITTING = "quitting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


class ErrorReport(BaseModel):
    """First error of a run, with the time it surfaced."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(description="Error kind (see StateCaptureError.kind)")
    message: str
    elapsed_seconds: float = Field(ge=0)

    @classmethod
    def from_exception(cls, exc: BaseException, elapsed_seconds: float) -> Self:
        kind = exc.kind if isinstance(exc, StateCaptureError) else "internal"
        message = exc.message if isinstance(exc, StateCaptureError) else str(exc)
        return cls(kind=kind, message=message, elapsed_seconds=elapsed_seconds)


class CaptureResult(BaseModel):
    """Summary of a successful capture run."""

    model_config = ConfigDict(frozen=True)

    output_path: Path
    state_file_bytes: int = Field(ge=0, description="Size of the state file when first observed")
    elapsed_seconds: float = Field(ge=0)
    bytes_read: int = Field(ge=0, description="Console bytes read from QEMU")
    migrate_attempts: int = Field(ge=1, description="migrate commands written before the file appeared")
    exit_code: int | None = Field(default=None, description="QEMU exit code after quit")
