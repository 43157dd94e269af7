"""Tests for the get-qemu-state command line.

Runs the real click command through CliRunner against the fake QEMU child,
so option parsing, environment defaults, exit codes and the JSON summary are
checked together.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner, Result

from qemu_state.cli import (
    EXIT_CAPTURE_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_SUCCESS,
    EXIT_TIMEOUT,
    DurationParamType,
    format_error,
    main,
)

ArgsJson = Callable[..., Path]

# ============================================================================
# Test Helpers
# ============================================================================


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, *args: str, env: dict[str, str] | None = None) -> Result:
    return runner.invoke(main, [sys.executable, *args], env=env, catch_exceptions=False)


def _summary(result: Result) -> dict[str, Any]:
    """JSON summary printed after the mirrored console."""
    stdout = result.stdout
    return json.loads(stdout[stdout.index("{") :])


# ============================================================================
# Success
# ============================================================================


class TestCapture:
    def test_success_json(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("self-migrate")),
            "-o",
            str(state_path),
            "--poll-interval",
            "50ms",
            "--json",
        )

        assert result.exit_code == EXIT_SUCCESS, result.stderr
        assert result.stdout.startswith("boot\n\n")
        assert "==========" not in result.stdout
        summary = _summary(result)
        assert summary["status"] == "ok"
        assert summary["output"] == str(state_path)
        assert summary["state_file_bytes"] == 4096
        assert summary["migrate_attempts"] == 1
        assert summary["qemu_exit_code"] == 0
        assert summary["bytes_read"] == len(b"boot\n==========\n")
        assert "Snapshot capture completed successfully" in result.stderr

    def test_quiet_suppresses_info_logs(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("self-migrate")),
            "-o",
            str(state_path),
            "--poll-interval",
            "50ms",
            "-q",
        )

        assert result.exit_code == EXIT_SUCCESS
        assert "INFO" not in result.stderr

    def test_overwrite(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        state_path.write_bytes(b"stale")

        result = _invoke(
            runner,
            "--args-json",
            str(args_json("self-migrate")),
            "-o",
            str(state_path),
            "--poll-interval",
            "50ms",
            "--overwrite",
        )

        assert result.exit_code == EXIT_SUCCESS
        assert state_path.stat().st_size == 4096

    def test_hung_quit_after_snapshot_succeeds(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("ignore-quit")),
            "-o",
            str(state_path),
            "-t",
            "1s",
            "--poll-interval",
            "50ms",
            "--json",
        )

        assert result.exit_code == EXIT_SUCCESS
        assert "timed out" not in result.stderr
        summary = _summary(result)
        assert summary["status"] == "ok"
        assert state_path.exists()


# ============================================================================
# Failures
# ============================================================================


class TestCaptureFailures:
    def test_timeout(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("silent")),
            "-o",
            str(state_path),
            "-t",
            "300ms",
            "--json",
        )

        assert result.exit_code == EXIT_TIMEOUT
        assert "Snapshot capture timed out" in result.stderr
        assert "waiting for marker" in result.stderr
        summary = _summary(result)
        assert summary["status"] == "error"
        assert summary["kind"] == "timeout"
        assert summary["elapsed_ms"] >= 300
        assert summary["bytes_read"] == len(b"booting\n")

    def test_timeout_from_environment(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("silent")),
            "-o",
            str(state_path),
            env={"QEMU_STATE_TIMEOUT_SECONDS": "0.3"},
        )

        assert result.exit_code == EXIT_TIMEOUT

    def test_existing_output(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        state_path.write_bytes(b"stale")

        result = _invoke(runner, "--args-json", str(args_json("self-migrate")), "-o", str(state_path))

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "already exists" in result.stderr
        assert "--overwrite" in result.stderr

    def test_missing_binary(self, runner: CliRunner, args_json: ArgsJson, tmp_path: Path) -> None:
        result = runner.invoke(
            main,
            [
                str(tmp_path / "qemu-system-none"),
                "--args-json",
                str(args_json("self-migrate")),
                "-o",
                str(tmp_path / "vm.state"),
            ],
            catch_exceptions=False,
        )

        assert result.exit_code == EXIT_CAPTURE_ERROR
        assert "QEMU could not be started" in result.stderr

    def test_stream_error(self, runner: CliRunner, args_json: ArgsJson, state_path: Path) -> None:
        result = _invoke(runner, "--args-json", str(args_json("close-stdin")), "-o", str(state_path))

        assert result.exit_code == EXIT_CAPTURE_ERROR
        assert "[stream]" in result.stderr


# ============================================================================
# Argument validation
# ============================================================================


class TestArguments:
    def test_args_json_required(self, runner: CliRunner) -> None:
        result = _invoke(runner)

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "--args-json" in result.stderr

    def test_missing_args_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = _invoke(runner, "--args-json", str(tmp_path / "nope.json"))

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "failed to read args json" in result.stderr

    def test_malformed_args_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "args.json"
        path.write_text('{"m": 512}')

        result = _invoke(runner, "--args-json", str(path))

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "expected a JSON array of strings" in result.stderr

    def test_invalid_duration(self, runner: CliRunner, args_json: ArgsJson) -> None:
        result = _invoke(runner, "--args-json", str(args_json("silent")), "-t", "soon")

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "invalid duration" in result.stderr

    def test_empty_output(self, runner: CliRunner, args_json: ArgsJson) -> None:
        result = _invoke(runner, "--args-json", str(args_json("silent")), "-o", "")

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "output file must not be empty" in result.stderr

    def test_empty_output_from_environment(self, runner: CliRunner, args_json: ArgsJson) -> None:
        result = _invoke(runner, "--args-json", str(args_json("silent")), env={"QEMU_STATE_OUTPUT": ""})

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "output file must not be empty" in result.stderr

    def test_empty_output_from_environment_with_overwrite(self, runner: CliRunner, args_json: ArgsJson) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("silent")),
            "--overwrite",
            env={"QEMU_STATE_OUTPUT": ""},
        )

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "output file must not be empty" in result.stderr

    def test_invalid_marker(self, runner: CliRunner, args_json: ArgsJson) -> None:
        result = _invoke(runner, "--args-json", str(args_json("silent")), "--marker", "=-=")

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "invalid marker" in result.stderr

    def test_invalid_environment(self, runner: CliRunner, args_json: ArgsJson) -> None:
        result = _invoke(
            runner,
            "--args-json",
            str(args_json("silent")),
            env={"QEMU_STATE_TIMEOUT_SECONDS": "forever"},
        )

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "QEMU_STATE_TIMEOUT_SECONDS" in result.stderr

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "get-qemu-state" in result.stdout


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    def test_duration_param_accepts_numbers(self) -> None:
        assert DurationParamType().convert(2, None, None) == 2.0
        assert DurationParamType().convert("1m", None, None) == 60.0

    def test_format_error_lists_suggestions(self) -> None:
        text = format_error("Title", "what went wrong", ["try this", "or that"])

        assert "Error: Title" in text
        assert "what went wrong" in text
        assert "• try this" in text
        assert "• or that" in text
