"""Append-only writer for the leading log file with size-triggered rotation."""

import logging
import os

from logpipe.errors import FatalError
from logpipe.rotator import RotationState, Rotator

logger = logging.getLogger(__name__)


class RotatingFileSink:
    """Appends lines to the leading file and rotates it past ``max_size`` bytes.

    The file handle is owned here. Around a rotation it is closed, the
    rotator runs against the path, and the leading file is reopened (created
    if the tool moved it away).
    """

    def __init__(self, state: RotationState, rotator: Rotator):
        self._state = state
        self._rotator = rotator
        self._file = None

    @property
    def bytes_written(self) -> int:
        return self._state.bytes_written

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self):
        """Create the rotation config and open the leading file for appending."""
        directory = os.path.dirname(self._state.leading_path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._file = open(self._state.leading_path, "ab")
        except OSError as exc:
            raise FatalError(f"Failed to open {self._state.leading_path}: {exc}") from exc
        self._rotator.write_config(self._state)
        logger.info("Writing to %s (rotate past %d bytes)",
                    self._state.leading_path, self._state.max_size)

    def write(self, data: bytes) -> None:
        """Append *data* (one line including its terminator).

        Raises FatalError if the write fails or rotation fails.
        """
        if self._file is None:
            raise FatalError(f"{self._state.leading_path} is not open")
        try:
            self._file.write(data)
            self._file.flush()
        except OSError as exc:
            raise FatalError(f"Failed to write to {self._state.leading_path}: {exc}") from exc

        self._state.bytes_written += len(data)
        if self._state.exceeded():
            self._rotate()

    def _rotate(self):
        self._close_file()
        self._rotator.rotate(self._state)
        try:
            self._file = open(self._state.leading_path, "ab")
        except OSError as exc:
            raise FatalError(f"Failed to reopen {self._state.leading_path}: {exc}") from exc

    def _close_file(self):
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as exc:
            raise FatalError(f"Failed to close {self._state.leading_path}: {exc}") from exc
        finally:
            self._file = None

    def close(self):
        self._close_file()
