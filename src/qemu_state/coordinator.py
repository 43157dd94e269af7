"""Boot-to-snapshot orchestration.

SnapshotCoordinator runs one capture:

    spawn QEMU ─▶ MarkerScanner ──(detected)──▶ SnapshotTrigger ─▶ quit
                   │                              │
                   └─▶ ConsoleMirror              └─▶ stat(output) poll

Four tasks share one deadline (``asyncio.timeout_at``): the scanner, the
trigger, the progress reporter and the process-exit watcher.  The terminal
event is a single future: the trigger completing resolves it, the first
component exception fails it, and anything reported after that is dropped.
Components report through task done-callbacks, so none of them ever waits
on the coordinator.

The deadline bounds the run up to the state file being observed.  After
that the run has succeeded: QEMU gets until the deadline to exit after quit
and is killed if it has not, and console errors while draining are only
logged.  On error or deadline before the snapshot, QEMU is killed.
"""

from __future__ import annotations

import asyncio
import functools
from typing import TYPE_CHECKING

import aiofiles.os

from qemu_state import constants
from qemu_state._logging import get_logger
from qemu_state.console_mirror import ConsoleMirror
from qemu_state.durations import format_duration
from qemu_state.exceptions import CaptureTimeoutError, ConfigError, FilesystemError, StateCaptureError
from qemu_state.marker_scanner import MarkerScanner
from qemu_state.models import CaptureResult, ErrorReport, RunState
from qemu_state.process_supervisor import (
    close_monitor_channel,
    kill_vm_process,
    start_vm_process,
    watch_process_exit,
)
from qemu_state.progress import ProgressReporter
from qemu_state.snapshot_trigger import SnapshotTrigger

if TYPE_CHECKING:
    from qemu_state.config import CaptureConfig
    from qemu_state.platform_utils import ProcessWrapper

logger = get_logger(__name__)

_TIMEOUT_WAITING_FOR: dict[RunState, str] = {
    RunState.BOOTING: "marker",
    RunState.MARKER_DETECTED: "monitor",
    RunState.MIGRATING: "state file",
    RunState.STATE_FILE_OBSERVED: "quit",
    RunState.QUITTING: "QEMU to exit after quit",
}


class SnapshotCoordinator:
    """Runs a single boot-to-snapshot capture. Not reusable.

    Attributes:
        config: Capture configuration
        error_report: First error of the run, once the run has failed
    """

    def __init__(self, config: CaptureConfig, *, mirror: ConsoleMirror | None = None) -> None:
        self.config = config
        self.error_report: ErrorReport | None = None
        self._mirror = mirror if mirror is not None else ConsoleMirror()
        self._state = RunState.BOOTING
        self._started_at: float | None = None
        self._proc: ProcessWrapper | None = None
        self._scanner: MarkerScanner | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def elapsed(self) -> float:
        """Seconds since run() started (0 before)."""
        if self._started_at is None or self._loop is None:
            return 0.0
        return self._loop.time() - self._started_at

    @property
    def bytes_read(self) -> int:
        return self._scanner.bytes_read if self._scanner is not None else 0

    async def run(self) -> CaptureResult:
        """Boot QEMU, wait for the marker, migrate to file, quit.

        Returns:
            CaptureResult describing the completed snapshot

        Raises:
            ConfigError: Output file already exists and overwrite is off
            ProcessStartError: QEMU could not be spawned
            StreamError: Console EOF/read error before the marker, or broken monitor pipe
            VmProcessDiedError: QEMU exited before quit was sent
            FilesystemError: State file could not be checked
            CaptureTimeoutError: Deadline elapsed before the state file was observed
        """
        if self._started_at is not None:
            raise RuntimeError("SnapshotCoordinator.run() can only be called once")

        self._loop = asyncio.get_running_loop()
        self._started_at = self._loop.time()
        deadline = self._started_at + self.config.timeout_seconds
        request = self.config.snapshot

        logger.info(
            "Capturing QEMU state: timeout=%s, output=%s",
            format_duration(self.config.timeout_seconds),
            request.output_path,
            extra={"timeout_seconds": self.config.timeout_seconds, "output_path": str(request.output_path)},
        )
        logger.info("QEMU args: %s", list(self.config.qemu_args))

        try:
            await self._prepare_output()
            try:
                async with asyncio.timeout_at(deadline):
                    self._proc = await start_vm_process(self.config.qemu_binary, self.config.qemu_args)
            except TimeoutError:
                await self._kill()
                raise self._timeout_error() from None
            result = await self._capture(self._proc, self._started_at, deadline)
        except StateCaptureError as e:
            await self._kill()
            self._record_failure(e)
            raise
        except asyncio.CancelledError:
            await self._kill()
            self._transition(RunState.FAILED)
            raise
        finally:
            if self._proc is not None:
                close_monitor_channel(self._proc)

        self._transition(RunState.COMPLETED)
        logger.info(
            "Snapshot capture completed successfully in %s",
            format_duration(result.elapsed_seconds),
            extra={"elapsed_seconds": result.elapsed_seconds, "output_path": str(result.output_path)},
        )
        return result

    async def _prepare_output(self) -> None:
        """Refuse (or clear) a pre-existing state file so the poll cannot match a stale one."""
        path = self.config.snapshot.output_path
        if not await aiofiles.os.path.exists(path):
            return
        if not self.config.overwrite:
            raise ConfigError(
                f"output file {path} already exists",
                context={"output_path": str(path)},
            )
        logger.info("Removing existing state file %s", path, extra={"output_path": str(path)})
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise FilesystemError(
                f"failed to remove existing state file {path}: {e.strerror or e}",
                context={"output_path": str(path), "errno": e.errno},
            ) from e

    async def _capture(self, proc: ProcessWrapper, started_at: float, deadline: float) -> CaptureResult:
        if proc.stdin is None or proc.stdout is None:
            raise RuntimeError("QEMU process was started without stdin/stdout pipes")

        loop = asyncio.get_running_loop()
        scanner = MarkerScanner(self.config.marker, self._mirror)
        self._scanner = scanner
        trigger = SnapshotTrigger(
            self.config.snapshot,
            proc.stdin,
            scanner.detected,
            on_state_change=self._transition,
        )
        reporter = ProgressReporter(
            self.config.progress_interval_seconds,
            started_at=started_at,
            clock=loop.time,
            state=lambda: self._state,
            bytes_read=lambda: scanner.bytes_read,
        )

        outcome: asyncio.Future[int] = loop.create_future()
        scan_task = asyncio.create_task(scanner.run(proc.stdout), name="marker-scanner")
        trigger_task = asyncio.create_task(trigger.run(), name="snapshot-trigger")
        reporter_task = asyncio.create_task(reporter.run(), name="progress-reporter")
        exit_task = asyncio.create_task(
            watch_process_exit(proc, lambda: trigger.quit_sent),
            name="process-exit",
        )

        report = functools.partial(self._report, outcome)
        scan_task.add_done_callback(report)
        trigger_task.add_done_callback(functools.partial(report, resolves=True))
        exit_task.add_done_callback(report)
        reporter_task.add_done_callback(_log_reporter_failure)

        tasks = (scan_task, trigger_task, reporter_task, exit_task)
        try:
            try:
                async with asyncio.timeout_at(deadline):
                    state_file_bytes = await outcome
            except TimeoutError:
                raise self._timeout_error() from None

            # Snapshot is on disk: from here on nothing fails the run
            reporter_task.cancel()
            exit_code = await self._wait_for_exit(proc, exit_task, deadline)
            await self._drain_console(scan_task)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Raises CancelledError if run() itself is cancelled meanwhile
            await asyncio.gather(*tasks, return_exceptions=True)

        return CaptureResult(
            output_path=self.config.snapshot.output_path,
            state_file_bytes=state_file_bytes,
            elapsed_seconds=self.elapsed,
            bytes_read=scanner.bytes_read,
            migrate_attempts=trigger.migrate_attempts,
            exit_code=exit_code,
        )

    async def _wait_for_exit(self, proc: ProcessWrapper, exit_task: asyncio.Task[int], deadline: float) -> int | None:
        """Exit code after quit; QEMU is killed if it is still up at the deadline."""
        try:
            async with asyncio.timeout_at(deadline):
                return await exit_task
        except TimeoutError:
            logger.warning(
                "QEMU did not exit after quit before the deadline, killing it",
                extra={"pid": proc.pid},
            )
            return await kill_vm_process(proc)

    async def _drain_console(self, scan_task: asyncio.Task[None]) -> None:
        """Let the mirror flush the console tail. Errors here are logged only."""
        try:
            await asyncio.wait_for(scan_task, timeout=constants.PROCESS_REAP_TIMEOUT_SECONDS)
        except (StateCaptureError, TimeoutError) as e:
            logger.debug("Console drain after snapshot ended: %s", e, extra={"error": str(e)})

    def _report(self, outcome: asyncio.Future[int], task: asyncio.Task[object], *, resolves: bool = False) -> None:
        """Done-callback routing a component's end into the terminal future.

        First terminal event wins; later ones are logged and dropped.
        """
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None and not resolves:
            return
        if outcome.done():
            if exc is not None:
                logger.debug(
                    "Discarding %s error after terminal event: %s",
                    task.get_name(),
                    exc,
                    extra={"task_name": task.get_name()},
                )
            return
        if exc is not None:
            outcome.set_exception(exc)
        else:
            outcome.set_result(task.result())  # type: ignore[arg-type]

    def _transition(self, state: RunState) -> None:
        if self._state.is_terminal:
            return
        logger.debug(
            "Run state %s -> %s (elapsed %s)",
            self._state.value,
            state.value,
            format_duration(self.elapsed),
            extra={"from_state": self._state.value, "to_state": state.value, "elapsed_seconds": self.elapsed},
        )
        self._state = state

    async def _kill(self) -> None:
        if self._proc is not None:
            await kill_vm_process(self._proc)

    def _timeout_error(self) -> CaptureTimeoutError:
        waiting_for = _TIMEOUT_WAITING_FOR.get(self._state, self._state.value)
        timeout = format_duration(self.config.timeout_seconds)
        message = f"timeout after {timeout} waiting for {waiting_for}"
        if self._state is RunState.BOOTING:
            message += f" (read {self.bytes_read} bytes)"
        return CaptureTimeoutError(
            message,
            elapsed_seconds=self.elapsed,
            bytes_read=self.bytes_read,
            context={"state": self._state.value},
        )

    def _record_failure(self, exc: StateCaptureError) -> None:
        elapsed = self.elapsed
        exc.context.setdefault("elapsed_seconds", elapsed)
        self._transition(RunState.FAILED)
        self.error_report = ErrorReport.from_exception(exc, elapsed)
        logger.error(
            "Error during snapshot capture (%s) after %s: %s",
            exc.kind,
            format_duration(elapsed),
            exc.message,
            extra={"kind": exc.kind, "elapsed_seconds": elapsed, **exc.context},
        )


def _log_reporter_failure(task: asyncio.Task[None]) -> None:
    """Progress logging is observational: a failing reporter is logged, never reported."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Progress reporter stopped", extra={"task_name": task.get_name()}, exc_info=exc)
