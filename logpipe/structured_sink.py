"""Writes one structured record per line to the journal."""

import logging

from logpipe.errors import RecoverableError
from logpipe.labels import LabelSet

logger = logging.getLogger(__name__)


class StructuredSink:
    """Sends each line as a single record carrying every label plus MESSAGE.

    *backend* is anything with ``send(fields)`` (a JournalSocket in
    production). Delivery failures are logged and counted; they never stop
    the pipeline.
    """

    def __init__(self, backend, labels: LabelSet):
        self._backend = backend
        self._labels = labels
        self._sent = 0
        self._failed = 0

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def failed(self) -> int:
        return self._failed

    def open(self):
        connect = getattr(self._backend, "connect", None)
        if connect is not None:
            connect()

    def write(self, line: bytes) -> bool:
        """Deliver one line. Returns False if the record was dropped."""
        try:
            self._backend.send(self._labels.record(line))
        except RecoverableError as exc:
            self._failed += 1
            logger.warning("Dropped structured record: %s", exc)
            return False
        self._sent += 1
        return True

    def close(self):
        close = getattr(self._backend, "close", None)
        if close is not None:
            close()
        logger.debug("Structured sink closed: sent=%d, failed=%d", self._sent, self._failed)
