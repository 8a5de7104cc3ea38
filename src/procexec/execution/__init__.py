"""Execution engine package."""

from procexec.execution.base import (
    CancellationToken,
    ExecutionOptions,
    ExecutionResult,
    Outcome,
    PipelineSpec,
    ProcessExecutor,
    ProcessSpec,
    ProcessStartError,
    ProgressEvent,
    assemble_result,
)
from procexec.execution.local_exec import LocalExecutor, execute, execute_with_piping
from procexec.execution.progress import (
    FFMPEG_FRAME_PATTERN,
    FRACTION_PATTERN,
    PERCENT_PATTERN,
    VSPIPE_FRAME_PATTERN,
    ProgressPattern,
    common_patterns,
    match_progress,
    patterns_from_names,
)

__all__ = [
    "CancellationToken",
    "ExecutionOptions",
    "ExecutionResult",
    "FFMPEG_FRAME_PATTERN",
    "FRACTION_PATTERN",
    "LocalExecutor",
    "Outcome",
    "PERCENT_PATTERN",
    "PipelineSpec",
    "ProcessExecutor",
    "ProcessSpec",
    "ProcessStartError",
    "ProgressEvent",
    "ProgressPattern",
    "VSPIPE_FRAME_PATTERN",
    "assemble_result",
    "common_patterns",
    "execute",
    "execute_with_piping",
    "match_progress",
    "patterns_from_names",
]
