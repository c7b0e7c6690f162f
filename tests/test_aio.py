"""Async facade tests (anyio on the asyncio backend)."""

from __future__ import annotations

import asyncio
import time

import pytest

from procdrain.runtime import aio
from procdrain.runtime.drain import IS_WINDOWS
from procdrain.runtime.errors import ProcessTimeoutError
from procdrain.runtime.supervisor import Exited, ProcessSupervisor, SupervisionState


def collecting_supervisor(process, **kwargs):
    chunks: list[bytes] = []
    supervisor = ProcessSupervisor(
        process, False, stdout_sink=chunks.append, stderr_sink=chunks.append, **kwargs
    )
    return supervisor, chunks


class TestAsyncWait:
    """aio.wait_for_result()."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_returns_exit_code(self, spawn):
        process = spawn("--text", "async", "--exit-code", "6")
        supervisor, chunks = collecting_supervisor(process)

        result = await aio.wait_for_result(supervisor)

        assert result == Exited(6)
        assert b"".join(chunks) == b"async"
        assert supervisor.state is SupervisionState.FINISHED

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_large_output_no_deadlock(self, spawn):
        process = spawn("--stderr-bytes", str(1024 * 1024), "--exit-code", "7")
        supervisor = ProcessSupervisor(process, quiet=True)

        result = await aio.wait_for_result(supervisor, timeout=20)

        assert result == Exited(7)
        assert supervisor.stderr_drain.bytes_read == 1024 * 1024

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_timeout_kills_and_raises(self, spawn):
        process = spawn("--sleep", "10")
        supervisor = ProcessSupervisor(process, quiet=True)

        start = time.monotonic()
        with pytest.raises(ProcessTimeoutError):
            await aio.wait_for_result(supervisor, timeout=0.5)

        assert time.monotonic() - start < 8.0
        assert process.poll() is not None
        assert supervisor.state is SupervisionState.TIMED_OUT
        assert not supervisor.stdout_drain.is_alive

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_task_cancellation_cancels_drains(self, spawn):
        process = spawn("--sleep", "10")
        supervisor = ProcessSupervisor(process, quiet=True)

        task = asyncio.create_task(aio.wait_for_result(supervisor))
        await asyncio.sleep(0.3)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert supervisor.state is SupervisionState.CANCELLED
        assert not supervisor.stdout_drain.is_alive
        assert not supervisor.stderr_drain.is_alive
        assert process.poll() is None

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_already_launched_supervisor(self, spawn):
        process = spawn("--exit-code", "1")
        supervisor = ProcessSupervisor(process, quiet=True)
        supervisor.launch()

        assert await aio.wait_for_result(supervisor) == Exited(1)
