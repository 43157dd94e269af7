"""Capture configuration for qemu-state.

CaptureConfig bundles everything one run needs: the resolved QEMU binary,
its argument list, the snapshot request, the console marker and the timing
knobs.  load_args_file() turns the JSON argument file into the list that
CaptureConfig.qemu_args expects.

Example:
    ```python
    from pathlib import Path

    from qemu_state import CaptureConfig, SnapshotCoordinator, load_args_file

    config = CaptureConfig(
        qemu_binary=Path("/usr/bin/qemu-system-x86_64"),
        qemu_args=load_args_file(Path("qemu-args.json")),
    )
    result = await SnapshotCoordinator(config).run()
    ```
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from qemu_state import constants
from qemu_state.exceptions import ConfigError
from qemu_state.models import MarkerPattern, SnapshotRequest

_ARGS_ADAPTER: TypeAdapter[list[str]] = TypeAdapter(list[str])


class CaptureConfig(BaseModel):
    """Configuration for SnapshotCoordinator.

    Attributes:
        qemu_binary: Path to the QEMU executable (already resolved).
        qemu_args: Arguments passed to QEMU. The guest console must be on
            QEMU's multiplexed stdio (``-serial mon:stdio`` or
            ``-nographic``) so the monitor escape works.
        snapshot: Output path and poll interval for migrate-to-file.
        marker: Console marker that triggers the snapshot.
        timeout_seconds: Deadline for the whole run. Default: 300.
        progress_interval_seconds: Heartbeat log interval. Default: 10.
        overwrite: Remove an existing state file before starting instead of
            refusing to run. Default: False.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    qemu_binary: Path = Field(description="QEMU executable")
    qemu_args: tuple[str, ...] = Field(default=(), description="Arguments for QEMU")
    snapshot: SnapshotRequest = Field(default_factory=SnapshotRequest)
    marker: MarkerPattern = Field(default_factory=MarkerPattern)
    timeout_seconds: float = Field(
        default=constants.DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        description="Deadline for the whole capture run",
    )
    progress_interval_seconds: float = Field(
        default=constants.DEFAULT_PROGRESS_INTERVAL_SECONDS,
        gt=0,
        description="Heartbeat log interval",
    )
    overwrite: bool = Field(
        default=False,
        description="Replace an existing state file",
    )


def load_args_file(path: Path) -> list[str]:
    """Read QEMU's argument list from a JSON array of strings.

    Raises:
        ConfigError: File missing/unreadable, invalid JSON, or not a list of strings
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ConfigError(
            f"failed to read args json {path}: {e.strerror or e}",
            context={"args_json": str(path)},
        ) from e

    try:
        return _ARGS_ADAPTER.validate_json(raw)
    except ValidationError as e:
        raise ConfigError(
            f"failed to parse args json {path}: expected a JSON array of strings",
            context={"args_json": str(path), "errors": e.errors(include_url=False)},
        ) from e


def build_config(**fields: object) -> CaptureConfig:
    """Construct a CaptureConfig, converting validation failures to ConfigError."""
    try:
        return CaptureConfig.model_validate(fields)
    except ValidationError as e:
        first = e.errors(include_url=False)[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigError(
            f"invalid configuration: {location}: {first['msg']}",
            context={"errors": e.errors(include_url=False)},
        ) from e
