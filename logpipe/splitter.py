"""Splits an unbounded byte stream into newline-terminated lines."""

import logging

logger = logging.getLogger(__name__)

NEWLINE = b"\n"

# 1 MiB; 0 disables the limit
DEFAULT_MAX_LINE_LENGTH = 1024 * 1024


class LineSplitter:
    """Buffers bytes across reads and yields complete lines.

    ``feed`` returns ``(line, terminated)`` pairs, the line without its
    terminator. Bytes after the last newline are kept as the tail until a
    later ``feed`` completes them or ``flush_remainder`` is called at
    end-of-stream.

    When *max_line_length* is positive, a tail that reaches that many bytes
    without a newline is emitted as a segment with ``terminated=False`` so
    the buffer stays bounded. No bytes are ever dropped or added.
    """

    def __init__(self, max_line_length: int = DEFAULT_MAX_LINE_LENGTH):
        if max_line_length < 0:
            raise ValueError("max_line_length must be >= 0")
        self._max_line_length = max_line_length
        self._tail = bytearray()
        self._flushed = False

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a newline."""
        return len(self._tail)

    def feed(self, data: bytes) -> list[tuple[bytes, bool]]:
        if self._flushed:
            raise RuntimeError("feed() called after flush_remainder()")
        if not data:
            return []

        self._tail.extend(data)
        lines: list[tuple[bytes, bool]] = []
        start = 0
        while True:
            end = self._tail.find(NEWLINE, start)
            if end == -1:
                break
            lines.append((bytes(self._tail[start:end]), True))
            start = end + 1
        del self._tail[:start]

        if self._max_line_length:
            while len(self._tail) >= self._max_line_length:
                logger.warning(
                    "Line exceeds %d bytes without a newline, splitting it",
                    self._max_line_length,
                )
                lines.append((bytes(self._tail[:self._max_line_length]), False))
                del self._tail[:self._max_line_length]

        return lines

    def flush_remainder(self) -> bytes | None:
        """Return the unterminated tail, if any. Call once, at end-of-stream."""
        if self._flushed:
            raise RuntimeError("flush_remainder() called twice")
        self._flushed = True
        if not self._tail:
            return None
        remainder = bytes(self._tail)
        self._tail.clear()
        return remainder
