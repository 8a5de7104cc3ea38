"""Launch and lifecycle control of a single child process."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Any, Mapping, Sequence

from procexec.execution.base import ExecutionOptions, ProcessSpec, ProcessStartError
from procexec.execution.drain import discard
from procexec.util.logging import get_logger
from procexec.util.observability import ObservabilityManager

_LOGGER = get_logger("procexec.execution.launcher")
_POSIX = os.name == "posix"


class ProcessHandle:
    """Exclusive owner of one running child process and its pipes."""

    def __init__(self, process: asyncio.subprocess.Process, command: list[str]) -> None:
        self._process = process
        self.command = command
        self.started_at = time.monotonic()
        self._readers: list[asyncio.Future[Any]] = []

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def output_streams(self) -> tuple[asyncio.StreamReader, asyncio.StreamReader]:
        """Return the stdout and stderr readers of the process."""

        stdout, stderr = self._process.stdout, self._process.stderr
        if stdout is None or stderr is None:
            raise RuntimeError(f"Process {self.pid} was started without output pipes.")
        return stdout, stderr

    def input_stream(self) -> asyncio.StreamWriter:
        """Return the writer feeding the process's stdin."""

        stdin = self._process.stdin
        if stdin is None:
            raise RuntimeError(f"Process {self.pid} was started without an input pipe.")
        return stdin

    def track(self, readers: Sequence[asyncio.Future[Any]]) -> None:
        """Make :meth:`wait` also wait for the tasks consuming this process's pipes."""

        self._readers.extend(readers)

    async def wait(self) -> int:
        """Suspend until the process exits and its tracked readers are done.

        A descendant that inherited the pipes keeps the readers going after
        the child itself exited, so both are awaited.
        """

        returncode = await self._process.wait()
        if self._readers:
            await asyncio.wait(self._readers)
        return returncode

    def kill(self) -> None:
        """Forcefully terminate the process and, on POSIX, its process group.

        The group is signalled even after the child itself exited, since a
        descendant may still hold the output pipes open. The group id cannot
        be reused while any member is alive.
        """

        _LOGGER.debug("Killing process %s (%s).", self.pid, self.command[0])
        if _POSIX:
            try:
                os.killpg(self._process.pid, signal.SIGKILL)
                return
            except ProcessLookupError:
                return
            except PermissionError:
                _LOGGER.debug("Cannot signal process group %s; killing the child only.", self.pid)
        if self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            pass


def resolve_working_directory(spec: ProcessSpec, options: ExecutionOptions) -> str | None:
    """Return the options' directory, else the spec's own, else None."""

    directory = options.working_directory or spec.working_directory
    return str(Path(directory)) if directory else None


def merge_environment(overrides: Mapping[str, str] | None) -> dict[str, str]:
    """Return the inherited environment with ``overrides`` applied on top."""

    merged_env = os.environ.copy()
    if overrides:
        merged_env.update({str(key): str(value) for key, value in overrides.items()})
    return merged_env


async def start_process(
    spec: ProcessSpec,
    options: ExecutionOptions,
    *,
    stdin: int = subprocess.DEVNULL,
) -> ProcessHandle:
    """Launch ``spec`` with stdout and stderr piped.

    Args:
        spec: What to run.
        options: Working directory and environment come from here.
        stdin: ``subprocess.DEVNULL`` (default) or ``subprocess.PIPE`` when the
            process consumes the other half of a pipeline.

    Returns:
        A handle owning the running process.

    Raises:
        ValueError: If the executable is empty.
        ProcessStartError: If the operating system refuses to start the process.
    """

    if not spec.executable or not spec.executable.strip():
        raise ValueError("Executable must be a non-empty string.")

    command = spec.argv()
    cwd = resolve_working_directory(spec, options)
    env = merge_environment(options.environment_variables)
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=cwd,
            env=env,
            stdin=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=_POSIX,
        )
    except OSError as exc:
        reason = exc.strerror or str(exc)
        _LOGGER.error("Failed to start %s: %s", command, reason)
        raise ProcessStartError(spec.executable, reason) from exc

    _LOGGER.info("Started process %s: %s", process.pid, command)
    return ProcessHandle(process, command)


async def abandon(handles: Sequence[ProcessHandle], tasks: Sequence[asyncio.Future[Any]]) -> None:
    """Kill ``handles``, cancel ``tasks``, and reap the processes after a failed run.

    Leftover output is discarded while reaping so a paused pipe cannot keep
    the exit from being observed. The cleanup is shielded from a second
    cancellation.
    """

    for handle in handles:
        handle.kill()
    for task in tasks:
        task.cancel()
    await asyncio.shield(_settle(handles, tasks))


async def _settle(handles: Sequence[ProcessHandle], tasks: Sequence[asyncio.Future[Any]]) -> None:
    await asyncio.gather(*tasks, return_exceptions=True)
    leftovers = [discard(stream) for handle in handles for stream in handle.output_streams()]
    await asyncio.gather(*(handle.wait() for handle in handles), *leftovers)


async def start_observed(
    spec: ProcessSpec,
    options: ExecutionOptions,
    observability: ObservabilityManager,
    *,
    stdin: int = subprocess.DEVNULL,
) -> ProcessHandle:
    """Start a process, reporting launch failures to ``observability``."""

    try:
        handle = await start_process(spec, options, stdin=stdin)
    except ProcessStartError as exc:
        observability.metrics.increment("process.start_failures")
        observability.log_event(
            "process.start_failed",
            {"executable": exc.executable, "reason": exc.reason},
            level="ERROR",
        )
        raise
    observability.log_event("process.started", {"pid": handle.pid, "command": handle.command})
    return handle
