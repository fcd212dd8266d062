"""Single-threaded loop that reads stdin and dispatches lines to the sinks.

The loop is an explicit state machine::

    IDLE --started--> RUNNING --end_of_stream--> DRAINING --drained--> TERMINATED
      |                  |                          ^
      +------fatal-------+----------fatal-----------+

Every enabled sink receives each line in input order, structured sink first.
The first FatalError ends the loop; no writes happen after it, and all sinks
are closed on every path out.
"""

import enum
import logging
import os
import selectors
from dataclasses import dataclass

from logpipe.errors import FatalError
from logpipe.splitter import LineSplitter

logger = logging.getLogger(__name__)

READ_SIZE = 64 * 1024


class PipelineState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class PipelineEvent(enum.Enum):
    STARTED = "started"
    DATA = "data"
    END_OF_STREAM = "end_of_stream"
    FATAL = "fatal"
    DRAINED = "drained"


_TRANSITIONS = {
    (PipelineState.IDLE, PipelineEvent.STARTED): PipelineState.RUNNING,
    (PipelineState.IDLE, PipelineEvent.FATAL): PipelineState.DRAINING,
    (PipelineState.RUNNING, PipelineEvent.DATA): PipelineState.RUNNING,
    (PipelineState.RUNNING, PipelineEvent.END_OF_STREAM): PipelineState.DRAINING,
    (PipelineState.RUNNING, PipelineEvent.FATAL): PipelineState.DRAINING,
    (PipelineState.DRAINING, PipelineEvent.FATAL): PipelineState.DRAINING,
    (PipelineState.DRAINING, PipelineEvent.DRAINED): PipelineState.TERMINATED,
}


def transition(state: PipelineState, event: PipelineEvent) -> PipelineState:
    """Return the state that follows *state* on *event*."""
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"No transition from {state.value} on {event.value}") from None


@dataclass(frozen=True)
class Outcome:
    error: FatalError | None = None
    lines: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class FdReader:
    """Blocks until *fd* is readable and returns whatever bytes are available.

    Returns ``b""`` at end-of-stream. Regular files cannot be registered with
    epoll, so those fall back to plain blocking reads.
    """

    def __init__(self, fd: int, read_size: int = READ_SIZE):
        self._fd = fd
        self._read_size = read_size
        self._selector = selectors.DefaultSelector()
        try:
            self._selector.register(fd, selectors.EVENT_READ)
        except (OSError, ValueError):
            self._selector.close()
            self._selector = None

    def __call__(self) -> bytes:
        while True:
            if self._selector is not None:
                self._selector.select()
            try:
                return os.read(self._fd, self._read_size)
            except BlockingIOError:
                continue

    def close(self):
        if self._selector is not None:
            self._selector.close()
            self._selector = None


class PipelineLoop:
    def __init__(self, read, splitter: LineSplitter | None = None,
                 structured_sink=None, file_sink=None):
        self._read = read
        self._splitter = splitter or LineSplitter()
        self._structured = structured_sink
        self._file = file_sink
        self._state = PipelineState.IDLE
        self._error: FatalError | None = None
        self._lines = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def lines(self) -> int:
        return self._lines

    def _sinks(self) -> list:
        return [s for s in (self._structured, self._file) if s is not None]

    def _advance(self, event: PipelineEvent):
        new_state = transition(self._state, event)
        if new_state is not self._state:
            logger.debug("Pipeline %s -> %s (%s)", self._state.value, new_state.value, event.value)
        self._state = new_state

    def _fail(self, exc: FatalError):
        if self._error is None:
            self._error = exc
            logger.error("Pipeline failed: %s", exc)
        self._advance(PipelineEvent.FATAL)

    def run(self) -> Outcome:
        """Run until end-of-stream or the first fatal error.

        Sinks are closed on every way out, including an exception that is
        not a FatalError (which is re-raised after the drain).
        """
        if self._state is not PipelineState.IDLE:
            raise RuntimeError("PipelineLoop.run() may only be called once")

        finished = False
        try:
            try:
                for sink in self._sinks():
                    sink.open()
            except FatalError as exc:
                self._fail(exc)
            else:
                self._advance(PipelineEvent.STARTED)

            if self._state is PipelineState.RUNNING:
                self._read_loop()
            finished = True
        finally:
            if not finished:
                logger.error("Pipeline interrupted, closing sinks")
                self._advance(PipelineEvent.FATAL)
            self._drain(flush=finished)
        return Outcome(error=self._error, lines=self._lines)

    def _read_loop(self):
        while self._state is PipelineState.RUNNING:
            try:
                chunk = self._read()
            except OSError as exc:
                self._fail(FatalError(f"Failed to read input: {exc}"))
                return

            if not chunk:
                self._advance(PipelineEvent.END_OF_STREAM)
                return

            self._advance(PipelineEvent.DATA)
            try:
                for line, terminated in self._splitter.feed(chunk):
                    self._dispatch(line, terminated)
            except FatalError as exc:
                self._fail(exc)

    def _dispatch(self, line: bytes, terminated: bool = True):
        if self._structured is not None:
            self._structured.write(line)
        if self._file is not None:
            self._file.write(line + b"\n" if terminated else line)
        self._lines += 1

    def _drain(self, flush: bool = True):
        if flush and self._error is None:
            remainder = self._splitter.flush_remainder()
            if remainder is not None:
                try:
                    self._dispatch(remainder, terminated=False)
                except FatalError as exc:
                    self._fail(exc)

        for sink in self._sinks():
            try:
                sink.close()
            except FatalError as exc:
                self._fail(exc)

        self._advance(PipelineEvent.DRAINED)
        logger.info("Pipeline finished after %d line(s)", self._lines)
