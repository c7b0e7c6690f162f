"""Exceptions raised by the supervision runtime."""

from __future__ import annotations

from typing import Any

__all__ = [
    "SupervisionError",
    "SupervisionStateError",
    "ProcessTimeoutError",
]


class SupervisionError(Exception):
    """Base class for supervision failures."""
    pass


class SupervisionStateError(SupervisionError):
    """A lifecycle operation was called in the wrong state."""
    pass


class ProcessTimeoutError(SupervisionError):
    """The child did not exit within the bounded wait and was killed.

    Attributes:
        pid: Process id of the killed child
        process_args: Argument vector of the child, if known
        timeout: The timeout that elapsed, in seconds
    """

    def __init__(self, pid: int | None, args: Any, timeout: float) -> None:
        self.pid = pid
        self.process_args = args
        self.timeout = timeout
        super().__init__(
            f"Process pid={pid} args={args!r} didn't exit by itself "
            f"within {timeout:g} seconds so it was killed"
        )
