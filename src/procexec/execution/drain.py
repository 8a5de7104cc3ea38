"""Output draining: line sequences, capture buffers, and progress events."""

from __future__ import annotations

import asyncio
import re
import time
from typing import AsyncIterator, Sequence

from procexec.execution.base import ProgressEvent, ProgressSink
from procexec.execution.progress import ProgressPattern, match_progress
from procexec.util.logging import get_logger

READ_CHUNK_SIZE = 64 * 1024
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")
_LOGGER = get_logger("procexec.execution.drain")


class OutputBuffer:
    """Accumulates captured lines for one result field."""

    def __init__(self) -> None:
        self._lines: list[str] = []

    def append(self, line: str) -> None:
        self._lines.append(line)

    def __len__(self) -> int:
        return len(self._lines)

    def text(self) -> str:
        """Return the captured lines, each terminated by a newline."""

        return "".join(f"{line}\n" for line in self._lines)


async def iter_lines(stream: asyncio.StreamReader, encoding: str = "utf-8") -> AsyncIterator[str]:
    """Yield decoded lines from ``stream`` until end-of-stream.

    ``\\n``, ``\\r\\n`` and a bare ``\\r`` all terminate a line, so tools that
    redraw a status line with carriage returns produce one line per redraw.
    Empty lines are skipped. A final fragment without a terminator is yielded
    once the stream closes.
    """

    pending = b""
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        pending += chunk
        parts = _LINE_BREAK.split(pending)
        pending = parts.pop()
        # A "\r\n" split across two reads leaves an empty part, which is skipped.
        for raw in parts:
            if raw:
                yield raw.decode(encoding, errors="replace")
    if pending:
        yield pending.decode(encoding, errors="replace")


async def drain_stream(
    stream: asyncio.StreamReader,
    *,
    label: str,
    buffer: OutputBuffer | None,
    patterns: Sequence[ProgressPattern] = (),
    progress: ProgressSink | None = None,
    started_at: float | None = None,
    encoding: str = "utf-8",
    prefix: str = "",
) -> int:
    """Consume ``stream`` line by line until it closes.

    Args:
        stream: The stream to read from.
        label: Name used in debug traces (e.g. "stdout").
        buffer: Destination for captured lines, or None to discard them.
        patterns: Progress patterns applied to every line.
        progress: Sink receiving a ProgressEvent for each matching line.
        started_at: ``time.monotonic()`` value of the launch, for elapsed time.
        encoding: Encoding used to decode the stream.
        prefix: Text prepended to every captured line.

    Returns:
        Number of lines read.
    """

    origin = started_at if started_at is not None else time.monotonic()
    count = 0
    async for line in iter_lines(stream, encoding):
        count += 1
        _LOGGER.debug("[%s] %s", label, line)
        if buffer is not None:
            buffer.append(f"{prefix}{line}")
        if progress is None or not patterns:
            continue
        percentage = match_progress(line, patterns)
        if percentage is None:
            continue
        event = ProgressEvent(
            percentage=percentage,
            line=line,
            elapsed_s=time.monotonic() - origin,
        )
        try:
            progress(event)
        except Exception:  # noqa: BLE001 - the child must keep being drained
            _LOGGER.warning("Progress sink raised for [%s] line %r.", label, line, exc_info=True)
    return count


async def discard(stream: asyncio.StreamReader) -> None:
    """Read and drop whatever ``stream`` still delivers until it closes."""

    while await stream.read(READ_CHUNK_SIZE):
        pass
