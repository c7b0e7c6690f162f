"""Single-process supervision with concurrent output draining.

procdrain runtime module v0.1.0

ProcessSupervisor bundles one already-spawned child process with two
StreamDrain workers (stdout and stderr) and offers:
- launch() / done() / cancel() for manual control of the drains
- wait_for_result() blocking until the child exits
- wait_for_result(timeout) polling the child and killing it on expiry

The drains are always started together and joined together, and joins
happen only after the exit status is known, so every byte the child
wrote is consumed before a wait returns.

Interruption is modelled with interrupt(): another thread can wake a
caller blocked in done() or a wait operation. An interrupted exit wait
returns WaitInterrupted rather than a made-up exit code, and done()
reports per drain whether the join completed or was abandoned.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any, NoReturn, Optional, Protocol, Union

from ..config import get_config
from .drain import Sink, StreamDrain, default_sink
from .errors import ProcessTimeoutError, SupervisionStateError

__all__ = [
    "ChildProcess",
    "Exited",
    "JoinReport",
    "JoinStatus",
    "ProcessSupervisor",
    "SupervisionState",
    "WaitInterrupted",
    "WaitResult",
]

logger = logging.getLogger(__name__)


class ChildProcess(Protocol):
    """The subset of subprocess.Popen the supervisor relies on."""

    pid: int
    args: Any
    stdout: Optional[IO[Any]]
    stderr: Optional[IO[Any]]
    returncode: Optional[int]

    def poll(self) -> Optional[int]: ...

    def wait(self, timeout: Optional[float] = None) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class SupervisionState(Enum):
    """Supervision session state.

    CREATED -> LAUNCHED -> FINISHED | CANCELLED | TIMED_OUT
    The three right-hand states are terminal.
    """

    CREATED = "created"
    LAUNCHED = "launched"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SupervisionState.FINISHED,
            SupervisionState.CANCELLED,
            SupervisionState.TIMED_OUT,
        )


class JoinStatus(Enum):
    JOINED = "joined"
    ABANDONED = "abandoned"  # join interrupted, drain may still be running


@dataclass(frozen=True)
class JoinReport:
    """Outcome of done(), one status per drain."""

    stdout: JoinStatus
    stderr: JoinStatus

    @property
    def complete(self) -> bool:
        """True when both drains were fully joined."""
        return self.stdout is JoinStatus.JOINED and self.stderr is JoinStatus.JOINED

    @property
    def abandoned(self) -> list[str]:
        """Names of the drains whose join was abandoned."""
        return [
            name
            for name, status in (("stdout", self.stdout), ("stderr", self.stderr))
            if status is JoinStatus.ABANDONED
        ]


@dataclass(frozen=True)
class Exited:
    """The child exited on its own with ``returncode``."""

    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class WaitInterrupted:
    """The wait was interrupted; the child's exit status is unknown."""

    @property
    def ok(self) -> bool:
        return False


WaitResult = Union[Exited, WaitInterrupted]


class ProcessSupervisor:
    """Drains a child's stdout/stderr while waiting for it to exit.

    Example:
        proc = subprocess.Popen(argv, stdout=PIPE, stderr=PIPE)
        supervisor = ProcessSupervisor(proc, quiet=True)
        try:
            result = supervisor.wait_for_result(timeout=30)
        except ProcessTimeoutError:
            ...  # child was killed, drains already joined
        if isinstance(result, Exited):
            print(result.returncode)

    The channels are captured at construction; the caller keeps
    ownership of the process itself.
    """

    def __init__(
        self,
        process: ChildProcess,
        quiet: bool | None = None,
        *,
        stdout_sink: Sink | None = None,
        stderr_sink: Sink | None = None,
        poll_interval: float | None = None,
        term_timeout: float | None = None,
        kill_timeout: float | None = None,
        chunk_size: int | None = None,
    ) -> None:
        """Capture the child's channels and create the two drains.

        Args:
            process: Running child with piped stdout/stderr (an unpiped
                channel yields a drain that finishes immediately)
            quiet: Discard output instead of forwarding (default from config)
            stdout_sink: Destination for stdout chunks (default: our stdout)
            stderr_sink: Destination for stderr chunks (default: our stderr)
            poll_interval: Bounded-wait poll tick in seconds
            term_timeout: Grace period after SIGTERM on timeout
            kill_timeout: Reap wait after SIGKILL on timeout
            chunk_size: Maximum bytes per drain read
        """
        config = get_config()
        self._process = process
        self._quiet = config.quiet if quiet is None else quiet
        self._poll_interval = (
            config.poll_interval if poll_interval is None else poll_interval
        )
        self._term_timeout = config.term_timeout if term_timeout is None else term_timeout
        self._kill_timeout = config.kill_timeout if kill_timeout is None else kill_timeout
        chunk_size = config.chunk_size if chunk_size is None else chunk_size

        self._stdout = StreamDrain(
            "stdout",
            process.stdout,
            stdout_sink or default_sink("stdout"),
            quiet=self._quiet,
            chunk_size=chunk_size,
        )
        self._stderr = StreamDrain(
            "stderr",
            process.stderr,
            stderr_sink or default_sink("stderr"),
            quiet=self._quiet,
            chunk_size=chunk_size,
        )

        self._state = SupervisionState.CREATED
        self._launched = False
        self._interrupted = threading.Event()
        self._last_join: JoinReport | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def process(self) -> ChildProcess:
        return self._process

    @property
    def state(self) -> SupervisionState:
        return self._state

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def stdout_drain(self) -> StreamDrain:
        return self._stdout

    @property
    def stderr_drain(self) -> StreamDrain:
        return self._stderr

    @property
    def last_join(self) -> JoinReport | None:
        """Report of the most recent done() call."""
        return self._last_join

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def launch(self) -> None:
        """Start both drain threads. Non-blocking, valid once."""
        with self._lock:
            if self._state is not SupervisionState.CREATED:
                raise SupervisionStateError(
                    f"launch() requires state created, got {self._state.value}"
                )
            self._stdout.start()
            self._stderr.start()
            self._launched = True
            self._state = SupervisionState.LAUNCHED

        logger.debug(
            f"Supervising pid={self._process.pid} quiet={self._quiet}"
        )

    def done(self) -> JoinReport:
        """Join both drains, each independently.

        An interrupt() while joining a drain is consumed and the join of
        that drain is abandoned, not retried.

        Returns:
            JoinReport saying which drains were fully joined
        """
        if not self._launched:
            raise SupervisionStateError("done() called before launch()")

        report = JoinReport(
            stdout=self._join_drain(self._stdout),
            stderr=self._join_drain(self._stderr),
        )
        self._last_join = report

        if report.complete:
            self._transition(SupervisionState.FINISHED)
        else:
            logger.warning(
                f"Drains not fully joined pid={self._process.pid} "
                f"abandoned={report.abandoned}"
            )
        return report

    def cancel(self) -> None:
        """Signal both drains to stop. Does not wait for them."""
        self._stdout.cancel()
        self._stderr.cancel()
        self._transition(SupervisionState.CANCELLED)
        logger.debug(f"Drains cancelled pid={self._process.pid}")

    def interrupt(self) -> None:
        """Wake the caller blocked in done() or a wait operation."""
        self._interrupted.set()

    def terminate(self) -> Optional[int]:
        """Stop the child: SIGTERM, then SIGKILL after term_timeout.

        Does nothing if the child already exited. The drains are left
        alone; they reach end-of-stream once the child is gone.

        Returns:
            The child's return code, or None if it survived the kill
        """
        if self._process.poll() is None:
            self._terminate_process()
        return self._process.returncode

    def wait_for_result(self, timeout: float | None = None) -> WaitResult:
        """Launch the drains, wait for the child, then join the drains.

        Args:
            timeout: None waits without bound; otherwise the child is
                polled every poll_interval seconds and killed once
                ``timeout`` seconds have elapsed

        Returns:
            Exited with the true exit code, or WaitInterrupted

        Raises:
            ProcessTimeoutError: The child outlived the timeout and was killed
        """
        if timeout is None:
            return self._wait_unbounded()
        return self._wait_bounded(timeout)

    def expire(self, timeout: float) -> NoReturn:
        """Kill the child after ``timeout`` seconds elapsed and raise.

        The child is terminated (SIGTERM, then SIGKILL), the drains are
        given term_timeout to reach end-of-stream, and the session moves
        to TIMED_OUT. Joining the drains is left to the caller.

        Raises:
            ProcessTimeoutError: Always
        """
        logger.warning(
            f"Subprocess pid={self._process.pid} still running after "
            f"{timeout}s, terminating"
        )
        self._terminate_process()
        self._settle_drains()
        self._transition(SupervisionState.TIMED_OUT)
        raise ProcessTimeoutError(self._process.pid, self._process.args, timeout)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_launched(self) -> None:
        if not self._launched:
            self.launch()

    def _transition(self, target: SupervisionState) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            self._state = target

    def _consume_interrupt(self) -> bool:
        if self._interrupted.is_set():
            self._interrupted.clear()
            return True
        return False

    def _join_drain(self, drain: StreamDrain) -> JoinStatus:
        while not drain.join(self._poll_interval):
            if self._consume_interrupt():
                logger.warning(
                    f"Interrupted while joining {drain.name} drain "
                    f"pid={self._process.pid}, abandoning join"
                )
                return JoinStatus.ABANDONED
        return JoinStatus.JOINED

    def _wait_unbounded(self) -> WaitResult:
        self._ensure_launched()
        try:
            while True:
                try:
                    returncode = self._process.wait(timeout=self._poll_interval)
                except subprocess.TimeoutExpired:
                    if self._consume_interrupt():
                        logger.info(
                            f"Wait interrupted pid={self._process.pid}, "
                            f"exit status unknown"
                        )
                        return WaitInterrupted()
                    continue
                logger.debug(
                    f"Subprocess exited pid={self._process.pid} returncode={returncode}"
                )
                return Exited(returncode)
        except BaseException:
            # Keep the final join prompt when unwinding (e.g. KeyboardInterrupt)
            self.cancel()
            raise
        finally:
            self.done()

    def _wait_bounded(self, timeout: float) -> WaitResult:
        self._ensure_launched()
        try:
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                returncode = self._process.poll()
                if returncode is not None:
                    logger.debug(
                        f"Subprocess exited pid={self._process.pid} "
                        f"returncode={returncode}"
                    )
                    return Exited(returncode)
                if self._interrupted.wait(self._poll_interval):
                    self._interrupted.clear()
                    logger.info(
                        f"Bounded wait interrupted pid={self._process.pid}, "
                        f"exit status unknown"
                    )
                    return WaitInterrupted()

            # The child may have exited during the last tick
            returncode = self._process.poll()
            if returncode is not None:
                return Exited(returncode)

            self.expire(timeout)
        except ProcessTimeoutError:
            raise
        except BaseException:
            self.cancel()
            raise
        finally:
            self.done()

    def _settle_drains(self) -> None:
        """Give the drains term_timeout to hit EOF after a kill.

        A grandchild that inherited the pipes can keep them open after the
        child died; such drains are cancelled so the final join returns.
        """
        for drain in (self._stdout, self._stderr):
            if not drain.join(self._term_timeout):
                logger.warning(
                    f"Drain {drain.name} still open after kill "
                    f"pid={self._process.pid}, cancelling"
                )
                drain.cancel()

    def _terminate_process(self) -> None:
        """Terminate the child gracefully, then forcefully if needed.

        1. terminate() (SIGTERM on POSIX)
        2. Wait up to term_timeout for exit
        3. kill() (SIGKILL on POSIX)
        4. Wait up to kill_timeout to reap it
        """
        pid = self._process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            self._process.terminate()
            try:
                self._process.wait(timeout=self._term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={self._process.returncode}"
                )
                return
            except subprocess.TimeoutExpired:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            self._process.kill()
            try:
                self._process.wait(timeout=self._kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={self._process.returncode}"
                )
            except subprocess.TimeoutExpired:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "ProcessSupervisor":
        self.launch()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.cancel()
        self.done()

    def __repr__(self) -> str:
        return (
            f"ProcessSupervisor(pid={self._process.pid}, "
            f"state={self._state.value}, quiet={self._quiet})"
        )
