"""Runtime module for child process supervision.

This module drains a child's stdout/stderr on dedicated threads and
provides blocking and timeout-bounded waits for its exit status.
"""

from __future__ import annotations

from .drain import DrainState, Sink, StreamDrain, default_sink, stream_sink
from .errors import ProcessTimeoutError, SupervisionError, SupervisionStateError
from .supervisor import (
    ChildProcess,
    Exited,
    JoinReport,
    JoinStatus,
    ProcessSupervisor,
    SupervisionState,
    WaitInterrupted,
    WaitResult,
)

__all__ = [
    "ChildProcess",
    "DrainState",
    "Exited",
    "JoinReport",
    "JoinStatus",
    "ProcessSupervisor",
    "ProcessTimeoutError",
    "Sink",
    "StreamDrain",
    "SupervisionError",
    "SupervisionState",
    "SupervisionStateError",
    "WaitInterrupted",
    "WaitResult",
    "default_sink",
    "stream_sink",
]
