"""Stream drain workers for child process output channels.

procdrain runtime module v0.1.0

A StreamDrain owns one readable byte channel of a child process (its
stdout or stderr pipe) and reads it until end-of-stream on a dedicated
thread, forwarding each chunk to a sink or discarding it in quiet mode.
An unread pipe fills up and blocks the writer, so the channel is read
even when nobody wants the bytes.

Key design points:
- POSIX: forward bytes the caller already buffered, then wait for
  readability with a selector on a short tick and read1() the source,
  so cancel() is seen while the child is silent
- Windows / non-fd sources: blocking read1()/read(), cancel() is seen at
  the next read boundary
- Read errors end the channel and are logged, never raised
"""

from __future__ import annotations

import codecs
import functools
import logging
import os
import selectors
import sys
import threading
from collections.abc import Callable
from enum import Enum
from typing import IO, Any, BinaryIO

from .errors import SupervisionStateError

__all__ = [
    "DrainState",
    "Sink",
    "StreamDrain",
    "default_sink",
    "stream_sink",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_CHUNK_SIZE = 4096
DEFAULT_TICK = 0.05  # seconds between cancel checks while the pipe is idle

# epoll refuses regular files, poll() accepts any descriptor
_Selector = getattr(selectors, "PollSelector", selectors.SelectSelector)

Sink = Callable[[bytes], None]


class DrainState(Enum):
    """Lifecycle of a single drain worker."""

    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"    # end-of-stream reached
    CANCELLED = "cancelled"  # stopped by cancel(), bytes may remain unread
    FAILED = "failed"        # read error, channel treated as ended

    @property
    def is_terminal(self) -> bool:
        return self in (DrainState.FINISHED, DrainState.CANCELLED, DrainState.FAILED)


def stream_sink(stream: BinaryIO) -> Sink:
    """Wrap a writable binary stream as a sink (write + flush per chunk)."""

    def _write(chunk: bytes) -> None:
        stream.write(chunk)
        stream.flush()

    return _write


def default_sink(channel: str) -> Sink:
    """Sink forwarding to the parent's own stdout or stderr.

    The stream is looked up on every write so that a replaced
    ``sys.stdout``/``sys.stderr`` is honoured. Text-only streams get
    UTF-8 decoded output; a character split across chunks is held back
    until its remaining bytes arrive.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _write(chunk: bytes) -> None:
        stream = getattr(sys, channel)
        buffer = getattr(stream, "buffer", None)
        if buffer is not None:
            buffer.write(chunk)
            buffer.flush()
        else:
            stream.write(decoder.decode(chunk))
            stream.flush()

    return _write


class StreamDrain:
    """Reads one output channel of a child process on its own thread.

    Example:
        proc = subprocess.Popen(argv, stdout=subprocess.PIPE)
        drain = StreamDrain("stdout", proc.stdout, sink=chunks.append)
        drain.start()
        proc.wait()
        drain.join()

    Attributes:
        name: Channel name, used for the thread name and in logs
        bytes_read: Total bytes read from the source so far
    """

    def __init__(
        self,
        name: str,
        source: IO[Any] | None,
        sink: Sink | None = None,
        *,
        quiet: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        tick: float = DEFAULT_TICK,
    ) -> None:
        """Create a drain; nothing is read until start() or run().

        Args:
            name: Channel name ("stdout" / "stderr")
            source: Readable channel owned by this drain; None when the
                channel was not piped, which makes the drain a no-op
            sink: Callable receiving each chunk; None discards
            quiet: Discard everything even when a sink is given
            chunk_size: Maximum bytes per read
            tick: Selector timeout between cancellation checks
        """
        self.name = name
        self._source = source
        self._quiet = quiet
        self._sink = None if quiet else sink
        self._sink_failed = False
        self._chunk_size = chunk_size
        self._tick = tick
        self._cancel_event = threading.Event()
        self._state = DrainState.CREATED
        self.bytes_read = 0
        self._thread = threading.Thread(
            target=self.run, daemon=True, name=f"procdrain_{name}"
        )

    @property
    def state(self) -> DrainState:
        return self._state

    @property
    def quiet(self) -> bool:
        """Whether the drain was created in quiet mode."""
        return self._quiet

    @property
    def sink_failed(self) -> bool:
        """Whether the sink raised and further output is being discarded."""
        return self._sink_failed

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def start(self) -> None:
        """Start the drain thread."""
        if self._state is not DrainState.CREATED:
            raise SupervisionStateError(
                f"Drain {self.name} already started (state={self._state.value})"
            )
        self._state = DrainState.RUNNING
        self._thread.start()

    def cancel(self) -> None:
        """Ask the drain to stop at its next read boundary. Does not block."""
        self._cancel_event.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the drain thread to finish.

        Returns:
            True if the thread has finished (or was never started)
        """
        if self._thread.ident is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def run(self) -> None:
        """Read the source until end-of-stream, cancellation, or a read error."""
        self._state = DrainState.RUNNING
        if self._source is None:
            self._state = DrainState.FINISHED
            return

        logger.debug(f"Drain {self.name} started (quiet={self.quiet})")
        try:
            fd = self._selectable_fd()
            if fd is not None:
                reached_eof = self._pump_fd(fd)
            else:
                reached_eof = self._pump_stream()
        except (OSError, ValueError) as e:
            # A broken pipe usually coincides with the child exiting
            logger.warning(f"Drain {self.name} read failed, treating as ended: {e}")
            self._state = DrainState.FAILED
        else:
            self._state = DrainState.FINISHED if reached_eof else DrainState.CANCELLED
        finally:
            self._close_source()

        logger.debug(
            f"Drain {self.name} {self._state.value} bytes_read={self.bytes_read}"
        )

    def _selectable_fd(self) -> int | None:
        if IS_WINDOWS:
            return None
        try:
            return self._source.fileno()
        except (AttributeError, OSError, ValueError):
            # io.UnsupportedOperation is both OSError and ValueError
            return None

    def _pump_fd(self, fd: int) -> bool:
        reader = self._binary_reader()
        if reader is not None:
            self._forward_buffered(fd, reader)
            read = reader.read1
        else:
            read = functools.partial(os.read, fd)

        with _Selector() as selector:
            selector.register(fd, selectors.EVENT_READ)
            while not self._cancel_event.is_set():
                if not selector.select(self._tick):
                    continue
                # Buffer is empty here, so read1 makes exactly one raw read
                chunk = read(self._chunk_size)
                if not chunk:
                    return True
                self._deliver(chunk)
        return False

    def _binary_reader(self) -> Any:
        """Buffered binary view of the source, or None for raw descriptors."""
        if hasattr(self._source, "read1"):
            return self._source
        buffer = getattr(self._source, "buffer", None)
        if buffer is not None and hasattr(buffer, "read1"):
            return buffer
        return None

    def _forward_buffered(self, fd: int, reader: Any) -> None:
        """Forward bytes already sitting in the reader's buffer.

        A caller may have consumed a banner with readline() before handing
        the pipe over; the rest of that read is buffered in the reader and
        would never make the descriptor readable again.
        """
        peek = getattr(reader, "peek", None)
        if peek is None:
            return
        was_blocking = os.get_blocking(fd)
        os.set_blocking(fd, False)
        try:
            # Non-blocking: returns the buffer, or b"" when it is empty
            # and nothing is waiting on the pipe
            pending = len(peek(1))
        finally:
            os.set_blocking(fd, was_blocking)
        while pending > 0:
            chunk = reader.read1(min(pending, self._chunk_size))
            if not chunk:
                break
            pending -= len(chunk)
            self._deliver(chunk)

    def _pump_stream(self) -> bool:
        read = getattr(self._source, "read1", None) or self._source.read
        while not self._cancel_event.is_set():
            chunk = read(self._chunk_size)
            if not chunk:
                return True
            if isinstance(chunk, str):
                chunk = chunk.encode()
            self._deliver(chunk)
        return False

    def _deliver(self, chunk: bytes) -> None:
        self.bytes_read += len(chunk)
        sink = self._sink
        if sink is None:
            return
        try:
            sink(chunk)
        except Exception as e:
            # Keep reading so the child never blocks on a full pipe
            logger.warning(
                f"Sink for {self.name} failed, discarding further output: {e}"
            )
            self._sink = None
            self._sink_failed = True

    def _close_source(self) -> None:
        try:
            self._source.close()
        except OSError as e:
            logger.debug(f"Error closing {self.name} source: {e}")

    def __repr__(self) -> str:
        return (
            f"StreamDrain(name={self.name}, state={self._state.value}, "
            f"quiet={self.quiet}, bytes_read={self.bytes_read})"
        )
