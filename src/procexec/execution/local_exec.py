"""Local execution engine implementation."""

from __future__ import annotations

import asyncio
import time
from typing import Sequence

from procexec.execution.base import (
    CancellationToken,
    ExecutionOptions,
    ExecutionResult,
    Outcome,
    PipelineSpec,
    ProcessExecutor,
    ProcessSpec,
    ProgressSink,
    assemble_result,
)
from procexec.execution.drain import OutputBuffer, drain_stream
from procexec.execution.launcher import ProcessHandle, abandon, start_observed
from procexec.execution.pipeline import run_pipeline
from procexec.execution.race import race_exit
from procexec.util.logging import get_logger
from procexec.util.observability import ObservabilityManager, create_observability_manager


class LocalExecutor(ProcessExecutor):
    """Execute processes on the local host."""

    def __init__(self, observability: ObservabilityManager | None = None) -> None:
        """Initialize the executor.

        Args:
            observability: Receives structured events and metrics. A private
                manager is created when omitted.
        """

        self._observability = observability or create_observability_manager()
        self._logger = get_logger(self.__class__.__name__)

    @property
    def observability(self) -> ObservabilityManager:
        return self._observability

    async def execute_async(
        self,
        executable: str,
        arguments: str | Sequence[str] = "",
        options: ExecutionOptions | None = None,
        progress: ProgressSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Run a process locally, draining its output while racing its exit.

        Args:
            executable: Path or name of the executable.
            arguments: Argument string or sequence of arguments.
            options: Execution options; defaults apply when omitted.
            progress: Optional sink receiving progress events.
            cancellation: Optional token that kills the process when cancelled.

        Returns:
            ExecutionResult with stdout, stderr, exit code, duration, and kill flags.

        Raises:
            ProcessStartError: If the process could not be launched.
        """

        options = options or ExecutionOptions()
        spec = ProcessSpec(executable, arguments)
        self._observability.metrics.increment("process.executions")

        start = time.monotonic()
        handle = await start_observed(spec, options, self._observability)

        stdout_buffer = OutputBuffer() if options.capture_output else None
        stderr_buffer = OutputBuffer() if options.capture_output else None
        with self._observability.track_duration("process.duration"):
            drains = _start_drains(handle, options, progress, stdout_buffer, stderr_buffer)
            handle.track(drains)
            try:
                outcome = await race_exit(handle, options.timeout_s, cancellation)
                await asyncio.gather(*drains)
            except BaseException:
                await abandon([handle], drains)
                raise
        duration = time.monotonic() - start

        result = assemble_result(
            command=handle.command,
            exit_code=handle.returncode if handle.returncode is not None else -1,
            stdout=stdout_buffer.text() if stdout_buffer is not None else "",
            stderr=stderr_buffer.text() if stderr_buffer is not None else "",
            duration_s=duration,
            outcome=outcome,
        )
        self._record_result(handle, result)
        return result

    async def execute_with_piping_async(
        self,
        source: ProcessSpec,
        destination: ProcessSpec,
        progress: ProgressSink | None = None,
        cancellation: CancellationToken | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Run ``source | destination`` locally.

        The result reflects the destination process; the source's diagnostics
        are only visible in the ``[source]`` lines of ``stderr``.
        """

        return await run_pipeline(
            PipelineSpec(source=source, destination=destination),
            options,
            progress,
            cancellation,
            observability=self._observability,
        )

    def _record_result(self, handle: ProcessHandle, result: ExecutionResult) -> None:
        metrics = self._observability.metrics
        if result.outcome is Outcome.TIMED_OUT:
            metrics.increment("process.timeouts")
        elif result.outcome is Outcome.CANCELLED:
            metrics.increment("process.cancellations")
        if result.outcome is not Outcome.COMPLETED:
            self._observability.log_event(
                "process.killed",
                {"pid": handle.pid, "reason": result.outcome.value},
                level="WARNING",
            )
        self._observability.log_event(
            "process.finished",
            {
                "pid": handle.pid,
                "exit_code": result.exit_code,
                "outcome": result.outcome.value,
                "duration_s": result.duration_s,
            },
        )
        self._logger.info(
            "Process %s finished with exit code %s (%s) in %.2fs.",
            handle.pid,
            result.exit_code,
            result.outcome.value,
            result.duration_s,
        )


def _start_drains(
    handle: ProcessHandle,
    options: ExecutionOptions,
    progress: ProgressSink | None,
    stdout_buffer: OutputBuffer | None,
    stderr_buffer: OutputBuffer | None,
) -> list[asyncio.Task[int]]:
    stdout, stderr = handle.output_streams()
    drains: list[asyncio.Task[int]] = []
    for label, stream, buffer in (
        ("stdout", stdout, stdout_buffer),
        ("stderr", stderr, stderr_buffer),
    ):
        drains.append(
            asyncio.ensure_future(
                drain_stream(
                    stream,
                    label=label,
                    buffer=buffer,
                    patterns=options.progress_patterns,
                    progress=progress,
                    started_at=handle.started_at,
                    encoding=options.encoding,
                )
            )
        )
    return drains


async def execute(
    executable: str,
    arguments: str | Sequence[str] = "",
    options: ExecutionOptions | None = None,
    progress: ProgressSink | None = None,
    cancellation: CancellationToken | None = None,
) -> ExecutionResult:
    """Run one process with a default :class:`LocalExecutor`."""

    return await LocalExecutor().execute_async(
        executable, arguments, options, progress, cancellation
    )


async def execute_with_piping(
    source: ProcessSpec,
    destination: ProcessSpec,
    progress: ProgressSink | None = None,
    cancellation: CancellationToken | None = None,
    options: ExecutionOptions | None = None,
) -> ExecutionResult:
    """Run ``source | destination`` with a default :class:`LocalExecutor`."""

    return await LocalExecutor().execute_with_piping_async(
        source, destination, progress, cancellation, options
    )
