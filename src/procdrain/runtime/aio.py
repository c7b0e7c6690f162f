"""Async facade over ProcessSupervisor.

The drains keep running on their own threads; only the caller's wait
becomes awaitable. The exit status is polled with anyio.sleep on the
supervisor's poll interval, the bounded variant races that loop against
anyio.move_on_after, and the blocking joins run in a worker thread.

Cancelling the awaiting task cancels the drains and joins them inside a
shielded scope before the cancellation propagates.
"""

from __future__ import annotations

import logging

import anyio
import anyio.to_thread

from .supervisor import Exited, ProcessSupervisor, SupervisionState

__all__ = ["wait_for_result"]

logger = logging.getLogger(__name__)


async def wait_for_result(
    supervisor: ProcessSupervisor,
    timeout: float | None = None,
) -> Exited:
    """Await the child's exit, then join the drains.

    Launches the drains if the supervisor has not been launched yet.

    Args:
        supervisor: Supervisor of the child to wait for
        timeout: Seconds before the child is killed (None = no bound)

    Returns:
        Exited with the child's exit code

    Raises:
        ProcessTimeoutError: The child outlived the timeout and was killed
    """
    if supervisor.state is SupervisionState.CREATED:
        supervisor.launch()

    process = supervisor.process
    try:
        returncode = process.poll()
        with anyio.move_on_after(timeout):
            while returncode is None:
                await anyio.sleep(supervisor.poll_interval)
                returncode = process.poll()

        if returncode is None:
            # One last look, the child may have exited as the deadline hit
            returncode = process.poll()
        if returncode is None:
            await anyio.to_thread.run_sync(supervisor.expire, timeout)

        logger.debug(f"Subprocess exited pid={process.pid} returncode={returncode}")
        return Exited(returncode)

    except anyio.get_cancelled_exc_class():
        logger.debug(f"Async wait cancelled pid={process.pid}, cancelling drains")
        supervisor.cancel()
        raise

    finally:
        with anyio.CancelScope(shield=True):
            await anyio.to_thread.run_sync(supervisor.done)
