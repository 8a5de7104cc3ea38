"""Two-process pipelines: source stdout spliced into destination stdin."""

from __future__ import annotations

import asyncio
import subprocess
import time

from procexec.execution.base import (
    CancellationToken,
    ExecutionOptions,
    ExecutionResult,
    Outcome,
    PipelineSpec,
    ProgressSink,
    assemble_result,
)
from procexec.execution.drain import READ_CHUNK_SIZE, OutputBuffer, drain_stream
from procexec.execution.launcher import abandon, start_observed
from procexec.execution.progress import common_patterns
from procexec.execution.race import race_exit
from procexec.util.logging import get_logger
from procexec.util.observability import ObservabilityManager, create_observability_manager

_LOGGER = get_logger("procexec.execution.pipeline")

SOURCE_PREFIX = "[source] "
DESTINATION_PREFIX = "[destination] "


async def copy_stream(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> int:
    """Copy bytes from ``reader`` to ``writer`` until ``reader`` ends.

    The writer is closed exactly once, after end-of-stream. If the consumer
    goes away early the remaining input is read and discarded so the producer
    never blocks on a full pipe.

    Returns:
        Number of bytes delivered to the writer.
    """

    delivered = 0
    consumer_open = True
    try:
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            if not consumer_open:
                continue
            try:
                writer.write(chunk)
                await writer.drain()
                delivered += len(chunk)
            except (BrokenPipeError, ConnectionResetError):
                _LOGGER.debug("Pipeline consumer closed its input after %s bytes.", delivered)
                consumer_open = False
    finally:
        writer.close()
    try:
        await writer.wait_closed()
    except (BrokenPipeError, ConnectionResetError):
        _LOGGER.debug("Pipeline consumer input was already closed.")
    return delivered


async def run_pipeline(
    pipeline: PipelineSpec,
    options: ExecutionOptions | None = None,
    progress: ProgressSink | None = None,
    cancellation: CancellationToken | None = None,
    *,
    observability: ObservabilityManager | None = None,
) -> ExecutionResult:
    """Run ``source | destination`` and return the destination's result.

    Progress patterns apply to the source's stderr only; when ``options`` is
    omitted, :func:`common_patterns` is used. Both processes race the same
    timeout and cancellation token. The result carries the destination's exit
    code, stdout, and kill flags; ``stderr`` interleaves both processes'
    diagnostics with ``[source]`` and ``[destination]`` prefixes.

    Raises:
        ProcessStartError: If either process could not be launched. A source
            that already started is killed before the error propagates.
    """

    if options is None:
        options = ExecutionOptions(progress_patterns=tuple(common_patterns()))
    observability = observability or create_observability_manager()
    observability.metrics.increment("pipeline.executions")

    source_spec, destination_spec = pipeline.source, pipeline.destination
    _LOGGER.info(
        "Executing with piping: %s | %s", source_spec.argv(), destination_spec.argv()
    )
    start = time.monotonic()
    source = await start_observed(source_spec, options, observability, stdin=subprocess.DEVNULL)
    try:
        destination = await start_observed(
            destination_spec, options, observability, stdin=subprocess.PIPE
        )
    except BaseException:
        await abandon([source], [])
        raise
    observability.log_event(
        "pipeline.started",
        {
            "source": {"pid": source.pid, "command": source.command},
            "destination": {"pid": destination.pid, "command": destination.command},
        },
    )

    stdout_buffer = OutputBuffer() if options.capture_output else None
    stderr_buffer = OutputBuffer() if options.capture_output else None
    source_stdout, source_stderr = source.output_streams()
    destination_stdout, destination_stderr = destination.output_streams()

    with observability.track_duration("pipeline.duration"):
        tasks = [
            asyncio.ensure_future(copy_stream(source_stdout, destination.input_stream())),
            asyncio.ensure_future(
                drain_stream(
                    source_stderr,
                    label="source stderr",
                    buffer=stderr_buffer,
                    patterns=options.progress_patterns,
                    progress=progress,
                    started_at=source.started_at,
                    encoding=options.encoding,
                    prefix=SOURCE_PREFIX,
                )
            ),
            asyncio.ensure_future(
                drain_stream(
                    destination_stdout,
                    label="destination stdout",
                    buffer=stdout_buffer,
                    encoding=options.encoding,
                )
            ),
            asyncio.ensure_future(
                drain_stream(
                    destination_stderr,
                    label="destination stderr",
                    buffer=stderr_buffer,
                    encoding=options.encoding,
                    prefix=DESTINATION_PREFIX,
                )
            ),
        ]
        source.track(tasks[:2])
        destination.track(tasks[2:])
        try:
            source_outcome, destination_outcome = await asyncio.gather(
                race_exit(source, options.timeout_s, cancellation),
                race_exit(destination, options.timeout_s, cancellation),
            )
            await asyncio.gather(*tasks)
        except BaseException:
            await abandon([source, destination], tasks)
            raise
    duration = time.monotonic() - start

    if source_outcome is not Outcome.COMPLETED:
        _LOGGER.warning("Pipeline source %s was killed (%s).", source.pid, source_outcome.value)
    result = assemble_result(
        command=[*source.command, "|", *destination.command],
        exit_code=destination.returncode if destination.returncode is not None else -1,
        stdout=stdout_buffer.text() if stdout_buffer is not None else "",
        stderr=stderr_buffer.text() if stderr_buffer is not None else "",
        duration_s=duration,
        outcome=destination_outcome,
    )
    observability.log_event(
        "pipeline.finished",
        {
            "source_exit_code": source.returncode,
            "source_outcome": source_outcome.value,
            "exit_code": result.exit_code,
            "outcome": result.outcome.value,
            "duration_s": duration,
        },
    )
    return result

