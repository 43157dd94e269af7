"""Command-line interface for qemu-state.

Usage:
    get-qemu-state --args-json args.json /usr/bin/qemu-system-x86_64
    get-qemu-state --args-json args.json -o base.state -t 10m qemu-system-aarch64
    QEMU_STATE_TIMEOUT_SECONDS=600 get-qemu-state --args-json args.json qemu-system-x86_64

The guest console is mirrored to stdout; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from qemu_state import (
    CaptureConfig,
    CaptureResult,
    CaptureTimeoutError,
    ConfigError,
    MarkerPattern,
    ProcessStartError,
    SnapshotCoordinator,
    StateCaptureError,
    __version__,
    build_config,
    load_args_file,
)
from qemu_state._logging import configure_logging, shutdown_logging
from qemu_state.durations import format_duration, parse_duration
from qemu_state.settings import Settings, load_settings

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 2
EXIT_TIMEOUT = 124  # Matches `timeout` command
EXIT_CAPTURE_ERROR = 125


class DurationParamType(click.ParamType):
    """Click type for ``5m``, ``500ms``, ``1m30s`` or plain seconds."""

    name = "duration"

    def convert(self, value: object, param: click.Parameter | None, ctx: click.Context | None) -> float:
        if isinstance(value, int | float):
            return float(value)
        try:
            return parse_duration(str(value))
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationParamType()


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def format_result_json(result: CaptureResult) -> str:
    """Machine-readable success summary."""
    output = {
        "status": "ok",
        "output": str(result.output_path),
        "state_file_bytes": result.state_file_bytes,
        "elapsed_ms": round(result.elapsed_seconds * 1000),
        "bytes_read": result.bytes_read,
        "migrate_attempts": result.migrate_attempts,
        "qemu_exit_code": result.exit_code,
    }
    return json.dumps(output, indent=2)


def format_failure_json(coordinator: SnapshotCoordinator, error: StateCaptureError) -> str:
    """Machine-readable failure summary."""
    report = coordinator.error_report
    output = {
        "status": "error",
        "kind": error.kind,
        "message": error.message,
        "elapsed_ms": round((report.elapsed_seconds if report else coordinator.elapsed) * 1000),
        "bytes_read": coordinator.bytes_read,
    }
    return json.dumps(output, indent=2)


def describe_error(error: StateCaptureError, config: CaptureConfig) -> tuple[str, int]:
    """Render a capture error for the terminal and pick the exit code."""
    if isinstance(error, CaptureTimeoutError):
        return (
            format_error(
                "Snapshot capture timed out",
                f"{error.message} (elapsed: {format_duration(error.elapsed_seconds)})",
                [
                    "Increase the deadline with -t/--timeout",
                    f"Check that the guest prints '{config.marker}' on the serial console",
                    "Check that the console is on QEMU's stdio (-serial mon:stdio or -nographic)",
                ],
            ),
            EXIT_TIMEOUT,
        )
    if isinstance(error, ConfigError):
        return (
            format_error("Invalid configuration", error.message, ["Use --overwrite to replace an existing state file"]),
            EXIT_CONFIG_ERROR,
        )
    if isinstance(error, ProcessStartError):
        return (
            format_error(
                "QEMU could not be started",
                error.message,
                [
                    "Check the QEMU_BINARY path",
                    "Check that the binary is executable",
                ],
            ),
            EXIT_CAPTURE_ERROR,
        )
    return format_error("Snapshot capture failed", f"[{error.kind}] {error.message}"), EXIT_CAPTURE_ERROR


async def run_capture(config: CaptureConfig, *, json_output: bool) -> int:
    """Run one capture and return the process exit code."""
    coordinator = SnapshotCoordinator(config)
    try:
        result = await coordinator.run()
    except StateCaptureError as e:
        message, exit_code = describe_error(e, config)
        click.echo(message, err=True)
        if json_output:
            click.echo(format_failure_json(coordinator, e))
        return exit_code

    if json_output:
        click.echo(format_result_json(result))
    return EXIT_SUCCESS


def resolve_config(
    *,
    qemu_binary: Path,
    args_json: Path,
    output: str | None,
    timeout: float | None,
    marker: str | None,
    poll_interval: float | None,
    progress_interval: float | None,
    overwrite: bool,
    settings: Settings,
) -> CaptureConfig:
    """Merge command-line options over environment defaults.

    Raises:
        ConfigError: Any option or the args file is invalid
    """
    marker_text = marker if marker is not None else settings.marker
    try:
        pattern = MarkerPattern.from_text(marker_text)
    except ValueError as e:
        raise ConfigError(f"invalid marker: {e}", context={"marker": marker_text}) from e

    qemu_args = load_args_file(args_json)

    return build_config(
        qemu_binary=qemu_binary,
        qemu_args=qemu_args,
        snapshot={
            "output_path": output if output is not None else settings.output,
            "poll_interval_seconds": poll_interval if poll_interval is not None else settings.poll_interval_seconds,
        },
        marker=pattern,
        timeout_seconds=timeout if timeout is not None else settings.timeout_seconds,
        progress_interval_seconds=(
            progress_interval if progress_interval is not None else settings.progress_interval_seconds
        ),
        overwrite=overwrite,
    )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("qemu_binary", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--args-json",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="JSON file with QEMU's argument list (array of strings)",
)
@click.option("-o", "--output", help="State file to write  [default: vm.state]")
@click.option("-t", "--timeout", type=DURATION, help="Deadline for the whole run, e.g. 5m  [default: 5m]")
@click.option("--marker", help="Console marker that triggers the snapshot  [default: ==========]")
@click.option("--poll-interval", type=DURATION, help="Wait between migrate attempts  [default: 500ms]")
@click.option("--progress-interval", type=DURATION, help="Heartbeat log interval  [default: 10s]")
@click.option("--overwrite", is_flag=True, help="Replace an existing state file")
@click.option("--json", "json_output", is_flag=True, help="Print a JSON summary on stdout")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.version_option(__version__, "-V", "--version", prog_name="get-qemu-state")
def main(
    qemu_binary: Path,
    args_json: Path,
    output: str | None,
    timeout: float | None,
    marker: str | None,
    poll_interval: float | None,
    progress_interval: float | None,
    overwrite: bool,
    json_output: bool,
    quiet: bool,
    verbose: bool,
) -> NoReturn:
    """Boot QEMU_BINARY until the guest prints the marker, then save its state.

    QEMU is started with the arguments from --args-json.  When the marker
    appears on the console, the monitor is entered (Ctrl-A C), the VM is
    migrated to the output file and QEMU is told to quit.

    \b
    Defaults can be set with QEMU_STATE_OUTPUT, QEMU_STATE_TIMEOUT_SECONDS,
    QEMU_STATE_MARKER, QEMU_STATE_POLL_INTERVAL_SECONDS and
    QEMU_STATE_PROGRESS_INTERVAL_SECONDS.  QEMU_STATE_LOG_LEVEL sets the
    log level.

    Examples:

    \b
      get-qemu-state --args-json args.json qemu-system-x86_64
      get-qemu-state --args-json args.json -o base.state -t 10m qemu-system-x86_64
      get-qemu-state --args-json args.json --json qemu-system-x86_64 > boot.log
    """
    configure_logging(level=logging.DEBUG if verbose else None, quiet=quiet)

    try:
        config = resolve_config(
            qemu_binary=qemu_binary,
            args_json=args_json,
            output=output,
            timeout=timeout,
            marker=marker,
            poll_interval=poll_interval,
            progress_interval=progress_interval,
            overwrite=overwrite,
            settings=load_settings(),
        )
    except ConfigError as e:
        click.echo(format_error("Invalid configuration", e.message), err=True)
        shutdown_logging()
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        exit_code = asyncio.run(run_capture(config, json_output=json_output))
    finally:
        shutdown_logging()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
