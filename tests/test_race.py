from __future__ import annotations

import asyncio
import threading

import pytest

from procexec.execution.base import CancellationToken, Outcome
from procexec.execution.race import race_exit


class FakeHandle:
    def __init__(self) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self.kills = 0
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def kill(self) -> None:
        self.kills += 1
        if self.returncode is None:
            self.exit(-9)


def test_natural_exit_wins_without_kill() -> None:
    async def scenario() -> tuple[Outcome, FakeHandle]:
        handle = FakeHandle()
        asyncio.get_running_loop().call_later(0.01, handle.exit, 0)
        outcome = await race_exit(handle, timeout_s=5, cancellation=CancellationToken())  # type: ignore[arg-type]
        return outcome, handle

    outcome, handle = asyncio.run(scenario())

    assert outcome is Outcome.COMPLETED
    assert handle.kills == 0


def test_timeout_kills_and_waits_for_exit() -> None:
    async def scenario() -> tuple[Outcome, FakeHandle]:
        handle = FakeHandle()
        outcome = await race_exit(handle, timeout_s=0.05)  # type: ignore[arg-type]
        return outcome, handle

    outcome, handle = asyncio.run(scenario())

    assert outcome is Outcome.TIMED_OUT
    assert handle.kills == 1
    assert handle.returncode == -9


def test_cancellation_kills_process() -> None:
    async def scenario() -> tuple[Outcome, FakeHandle]:
        handle = FakeHandle()
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)
        outcome = await race_exit(handle, timeout_s=5, cancellation=token)  # type: ignore[arg-type]
        return outcome, handle

    outcome, handle = asyncio.run(scenario())

    assert outcome is Outcome.CANCELLED
    assert handle.kills == 1


def test_already_cancelled_token_wins_immediately() -> None:
    async def scenario() -> Outcome:
        handle = FakeHandle()
        token = CancellationToken()
        token.cancel()
        return await race_exit(handle, cancellation=token)  # type: ignore[arg-type]

    assert asyncio.run(scenario()) is Outcome.CANCELLED


def test_no_timeout_waits_for_exit() -> None:
    async def scenario() -> Outcome:
        handle = FakeHandle()
        asyncio.get_running_loop().call_later(0.05, handle.exit, 3)
        return await race_exit(handle)  # type: ignore[arg-type]

    assert asyncio.run(scenario()) is Outcome.COMPLETED


def test_cancelling_the_awaiting_task_kills_process() -> None:
    handles: list[FakeHandle] = []

    async def scenario() -> None:
        handle = FakeHandle()
        handles.append(handle)
        task = asyncio.ensure_future(race_exit(handle))  # type: ignore[arg-type]
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert handles[0].kills == 1
    assert handles[0].returncode == -9


def test_cancellation_token_can_be_cancelled_from_another_thread() -> None:
    async def scenario() -> bool:
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        await asyncio.wait_for(token.wait(), timeout=5)
        return token.cancelled

    assert asyncio.run(scenario()) is True


def test_cancellation_token_cancel_is_idempotent() -> None:
    token = CancellationToken()
    token.cancel()
    token.cancel()

    assert token.cancelled is True
