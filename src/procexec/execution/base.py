"""Execution engine base types and interfaces."""

from __future__ import annotations

import asyncio
import codecs
import enum
import os
import shlex
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Sequence

from procexec.execution.progress import ProgressPattern


class ProcessStartError(RuntimeError):
    """Raised when a child process could not be launched at all.

    This is distinct from a process that ran and exited non-zero: no process
    existed, so there is no exit code and no captured output.
    """

    def __init__(self, executable: str, reason: str) -> None:
        super().__init__(f"Failed to start '{executable}': {reason}")
        self.executable = executable
        self.reason = reason


class Outcome(enum.Enum):
    """How an execution ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProcessSpec:
    """Immutable description of a process to run.

    Attributes:
        executable: Path or name of the executable.
        arguments: Argument string (split with POSIX shell rules) or a
            sequence of already split arguments.
        working_directory: Optional working directory for the child.
    """

    executable: str
    arguments: str | Sequence[str] = ""
    working_directory: str | Path | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.arguments, str):
            object.__setattr__(self, "arguments", tuple(self.arguments))

    def argv(self) -> list[str]:
        """Return the full argument vector, executable first."""

        if isinstance(self.arguments, str):
            args = shlex.split(self.arguments, posix=os.name != "nt")
        else:
            args = [str(arg) for arg in self.arguments]
        return [self.executable, *args]


@dataclass(frozen=True)
class PipelineSpec:
    """Source and destination of a two-process pipe."""

    source: ProcessSpec
    destination: ProcessSpec


@dataclass(frozen=True)
class ExecutionOptions:
    """Recognized options for one execution.

    Attributes:
        working_directory: Overrides the process spec's own directory.
        timeout_s: Wall-clock seconds after which the process is killed.
        progress_patterns: Ordered rules applied to every output line.
        capture_output: Whether to retain stdout/stderr text.
        environment_variables: Merged over the inherited environment.
        encoding: Encoding used to decode output lines.
    """

    working_directory: str | Path | None = None
    timeout_s: float | None = None
    progress_patterns: tuple[ProgressPattern, ...] = ()
    capture_output: bool = True
    environment_variables: Mapping[str, str] = field(default_factory=dict, hash=False)
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        if self.timeout_s is not None and self.timeout_s < 0:
            raise ValueError("timeout_s must be non-negative.")
        try:
            codecs.lookup(self.encoding)
        except LookupError as exc:
            raise ValueError(f"Unknown output encoding: {self.encoding!r}.") from exc
        object.__setattr__(self, "progress_patterns", tuple(self.progress_patterns))
        object.__setattr__(
            self, "environment_variables", MappingProxyType(dict(self.environment_variables))
        )


@dataclass(frozen=True)
class ProgressEvent:
    """Progress derived from one output line."""

    percentage: float
    line: str
    elapsed_s: float


ProgressSink = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class ExecutionResult:
    """Result of executing a command.

    Attributes:
        command: The command executed as a list of strings.
        exit_code: Exit code returned by the process. Negative values on POSIX
            mean the process was terminated by that signal.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_s: Duration of the execution in seconds.
        timed_out: The process was killed because the timeout elapsed.
        cancelled: The process was killed because cancellation was requested.
    """

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_s: float
    timed_out: bool = False
    cancelled: bool = False

    def __post_init__(self) -> None:
        if self.timed_out and self.cancelled:
            raise ValueError("A result cannot be both timed out and cancelled.")

    @property
    def success(self) -> bool:
        """Whether the process exited with code zero on its own."""

        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    @property
    def outcome(self) -> Outcome:
        if self.timed_out:
            return Outcome.TIMED_OUT
        if self.cancelled:
            return Outcome.CANCELLED
        return Outcome.COMPLETED


def assemble_result(
    command: Sequence[str],
    exit_code: int,
    stdout: str,
    stderr: str,
    duration_s: float,
    outcome: Outcome,
) -> ExecutionResult:
    """Build the immutable result of one execution."""

    return ExecutionResult(
        command=list(command),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_s=duration_s,
        timed_out=outcome is Outcome.TIMED_OUT,
        cancelled=outcome is Outcome.CANCELLED,
    )


class CancellationToken:
    """Thread-safe cancellation signal that coroutines can await.

    ``cancel`` may be called from any thread, including one that does not run
    the event loop awaiting the token.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation. Calling it again has no further effect."""

        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            waiters = list(self._waiters)
        for loop, event in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(event.set)

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""

        loop = asyncio.get_running_loop()
        event = asyncio.Event()
        waiter = (loop, event)
        with self._lock:
            if self._cancelled:
                return
            self._waiters.append(waiter)
        try:
            await event.wait()
        finally:
            with self._lock:
                self._waiters.remove(waiter)


class ProcessExecutor(ABC):
    """Abstract base class for process execution engines."""

    @abstractmethod
    async def execute_async(
        self,
        executable: str,
        arguments: str | Sequence[str] = "",
        options: ExecutionOptions | None = None,
        progress: ProgressSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Run a process and capture its results.

        Args:
            executable: Path or name of the executable.
            arguments: Argument string or sequence of arguments.
            options: Execution options; defaults apply when omitted.
            progress: Optional sink receiving progress events.
            cancellation: Optional token that kills the process when cancelled.

        Returns:
            ExecutionResult with captured output, exit code, and kill flags.

        Raises:
            ProcessStartError: If the process could not be launched.
        """

    @abstractmethod
    async def execute_with_piping_async(
        self,
        source: ProcessSpec,
        destination: ProcessSpec,
        progress: ProgressSink | None = None,
        cancellation: CancellationToken | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Run ``source | destination`` and return the destination's result."""

    def execute(
        self,
        executable: str,
        arguments: str | Sequence[str] = "",
        options: ExecutionOptions | None = None,
        progress: ProgressSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Blocking variant of :meth:`execute_async`."""

        return asyncio.run(
            self.execute_async(executable, arguments, options, progress, cancellation)
        )

    def execute_with_piping(
        self,
        source: ProcessSpec,
        destination: ProcessSpec,
        progress: ProgressSink | None = None,
        cancellation: CancellationToken | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Blocking variant of :meth:`execute_with_piping_async`."""

        return asyncio.run(
            self.execute_with_piping_async(source, destination, progress, cancellation, options)
        )
