"""Racing process exit against a timeout and a cancellation signal."""

from __future__ import annotations

import asyncio

from procexec.execution.base import CancellationToken, Outcome
from procexec.execution.launcher import ProcessHandle
from procexec.util.logging import get_logger

_LOGGER = get_logger("procexec.execution.race")


async def race_exit(
    handle: ProcessHandle,
    timeout_s: float | None = None,
    cancellation: CancellationToken | None = None,
) -> Outcome:
    """Wait for the first of natural exit, timeout, or cancellation.

    On timeout or cancellation the process is killed immediately, without a
    grace period, and its exit is awaited before returning. If the awaiting
    task is itself cancelled, the process is killed and reaped first.

    Args:
        handle: The running process.
        timeout_s: Seconds before the process is killed, or None for no limit.
        cancellation: Optional token that kills the process when cancelled.

    Returns:
        The outcome that won the race.
    """

    exit_task = asyncio.ensure_future(handle.wait())
    cancel_task: asyncio.Future[None] | None = None
    watched: set[asyncio.Future[object]] = {exit_task}
    if cancellation is not None:
        cancel_task = asyncio.ensure_future(cancellation.wait())
        watched.add(cancel_task)

    try:
        done, _ = await asyncio.wait(
            watched, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        handle.kill()
        await asyncio.shield(exit_task)
        raise
    finally:
        if cancel_task is not None and not cancel_task.done():
            cancel_task.cancel()

    # Natural exit wins a tie.
    if exit_task in done:
        return Outcome.COMPLETED

    if cancel_task is not None and cancel_task in done:
        outcome = Outcome.CANCELLED
        _LOGGER.warning("Cancellation requested; killing process %s.", handle.pid)
    else:
        outcome = Outcome.TIMED_OUT
        _LOGGER.warning(
            "Process %s exceeded timeout of %ss; killing it.", handle.pid, timeout_s
        )
    handle.kill()
    await exit_task
    return outcome
