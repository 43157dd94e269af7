"""Constants for qemu-state defaults and protocol bytes."""

from typing import Final

# ============================================================================
# Output and Configuration Defaults
# ============================================================================

DEFAULT_OUTPUT_FILE: Final[str] = "vm.state"
"""Default path of the migrated VM state file."""

DEFAULT_TIMEOUT_SECONDS: Final[float] = 5 * 60
"""Deadline for the whole capture run (boot, marker, migrate, quit)."""

# ============================================================================
# Console Marker
# ============================================================================

DEFAULT_MARKER: Final[str] = "=========="
"""Run of identical bytes the guest prints when it is ready to be snapshotted."""

DEFAULT_MARKER_BYTE: Final[int] = ord("=")
"""Byte value making up the marker run."""

DEFAULT_MARKER_RUN_LENGTH: Final[int] = 10
"""Number of consecutive marker bytes required for detection."""

CONSOLE_READ_CHUNK_BYTES: Final[int] = 4096
"""Maximum bytes pulled from the QEMU console per read call."""

# ============================================================================
# Monitor Protocol
# ============================================================================

MONITOR_ESCAPE_SEQUENCE: Final[bytes] = b"\x01c"
"""Ctrl-A C: switches QEMU's multiplexed stdio from the serial console to the HMP monitor."""

MIGRATE_COMMAND_TEMPLATE: Final[str] = "migrate file:{path}\n"
"""HMP command serializing the running VM to a file."""

QUIT_COMMAND: Final[bytes] = b"quit\n"
"""HMP command terminating QEMU once the state file exists."""

# ============================================================================
# Intervals
# ============================================================================

DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 0.5
"""Delay between a migrate command and the state-file existence check."""

DEFAULT_PROGRESS_INTERVAL_SECONDS: Final[float] = 10.0
"""Heartbeat interval for elapsed-time progress logging."""

PROCESS_REAP_TIMEOUT_SECONDS: Final[float] = 5.0
"""How long to wait for a killed QEMU process to be reaped."""
