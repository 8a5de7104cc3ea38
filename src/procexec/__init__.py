"""procexec: run child processes with progress, timeouts, cancellation, and pipes."""

from procexec.execution import (
    CancellationToken,
    ExecutionOptions,
    ExecutionResult,
    LocalExecutor,
    ProcessSpec,
    ProcessStartError,
    ProgressEvent,
    ProgressPattern,
    common_patterns,
    execute,
    execute_with_piping,
)

__all__ = [
    "CancellationToken",
    "ExecutionOptions",
    "ExecutionResult",
    "LocalExecutor",
    "ProcessSpec",
    "ProcessStartError",
    "ProgressEvent",
    "ProgressPattern",
    "common_patterns",
    "execute",
    "execute_with_piping",
]

__version__ = "0.1.0"
