"""Supervision summary model.

Serialised by ``procdrain --json`` after the child finished, one JSON
object describing how the session ended.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .runtime.drain import StreamDrain
from .runtime.supervisor import JoinStatus, ProcessSupervisor

__all__ = ["DrainSummary", "SupervisionReport", "Outcome"]

Outcome = Literal["exited", "interrupted", "timed_out"]


class DrainSummary(BaseModel):
    """One drain at the end of the session.

    Attributes:
        name: Channel name (stdout/stderr)
        state: Final drain state
        bytes_read: Bytes consumed from the pipe
        joined: Whether done() fully joined the drain (None if never joined)
        sink_failed: Whether the sink raised and later output was discarded
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    state: str
    bytes_read: int = 0
    joined: bool | None = None
    sink_failed: bool = False

    @classmethod
    def from_drain(cls, drain: StreamDrain, status: JoinStatus | None) -> "DrainSummary":
        return cls(
            name=drain.name,
            state=drain.state.value,
            bytes_read=drain.bytes_read,
            joined=None if status is None else status is JoinStatus.JOINED,
            sink_failed=drain.sink_failed,
        )


class SupervisionReport(BaseModel):
    """How a supervised child ended.

    Attributes:
        argv: Command line of the child
        pid: Process id
        outcome: exited / interrupted / timed_out
        returncode: Exit code when known
        timeout: Bounded-wait timeout in seconds, None for an unbounded wait
        elapsed: Wall time of the wait in seconds
        state: Final supervision state
        drains: Per-channel summaries
    """

    model_config = ConfigDict(extra="ignore")

    argv: list[str] = Field(default_factory=list)
    pid: int | None = None
    outcome: Outcome
    returncode: int | None = None
    timeout: float | None = None
    elapsed: float = 0.0
    state: str
    drains: list[DrainSummary] = Field(default_factory=list)

    @classmethod
    def from_supervisor(
        cls,
        supervisor: ProcessSupervisor,
        *,
        outcome: Outcome,
        returncode: int | None = None,
        timeout: float | None = None,
        elapsed: float = 0.0,
    ) -> "SupervisionReport":
        """Snapshot a supervisor after its wait returned or raised."""
        join = supervisor.last_join
        process = supervisor.process
        return cls(
            argv=_argv_of(process.args),
            pid=process.pid,
            outcome=outcome,
            returncode=returncode,
            timeout=timeout,
            elapsed=round(elapsed, 3),
            state=supervisor.state.value,
            drains=[
                DrainSummary.from_drain(
                    supervisor.stdout_drain, join.stdout if join else None
                ),
                DrainSummary.from_drain(
                    supervisor.stderr_drain, join.stderr if join else None
                ),
            ],
        )


def _argv_of(args: Any) -> list[str]:
    if args is None:
        return []
    if isinstance(args, (str, bytes)):
        args = [args]
    return [a.decode(errors="replace") if isinstance(a, bytes) else str(a) for a in args]
