"""Minimal client for journald's native datagram protocol.

Each record is one datagram made of fields. A field whose value has no
newline is sent as ``KEY=value\\n``; otherwise the binary-safe form is used:
``KEY\\n`` followed by the value length as a little-endian 64-bit integer,
the raw value and a trailing newline.

Records too large for a single datagram are written to a sealed memfd and
the descriptor is passed to journald instead (``SCM_RIGHTS``), which reads
the record from it.
"""

import errno
import fcntl
import logging
import os
import socket
import struct

from logpipe.errors import FatalError, RecoverableError

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/run/systemd/journal/socket"

# journald only trusts a memfd that can no longer change
_MEMFD_SEALS = fcntl.F_SEAL_SHRINK | fcntl.F_SEAL_GROW | fcntl.F_SEAL_WRITE | fcntl.F_SEAL_SEAL

# send errors that mean "too big for a datagram"
_OVERSIZE_ERRNOS = (errno.EMSGSIZE, errno.ENOBUFS)


def _to_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def encode_field(key: str, value) -> bytes:
    name = key.encode("utf-8")
    data = _to_bytes(value)
    if b"\n" in data:
        return name + b"\n" + struct.pack("<Q", len(data)) + data + b"\n"
    return name + b"=" + data + b"\n"


def encode_record(fields) -> bytes:
    """Encode ordered ``(key, value)`` pairs as a single native-protocol datagram."""
    return b"".join(encode_field(key, value) for key, value in fields)


def decode_record(payload: bytes) -> list[tuple[str, bytes]]:
    """Decode a native-protocol datagram back into ``(key, value)`` pairs."""
    fields = []
    pos = 0
    while pos < len(payload):
        newline = payload.index(b"\n", pos)
        line = payload[pos:newline]
        if b"=" in line:
            key, value = line.split(b"=", 1)
            fields.append((key.decode("utf-8"), value))
            pos = newline + 1
            continue
        (length,) = struct.unpack_from("<Q", payload, newline + 1)
        start = newline + 1 + 8
        value = payload[start:start + length]
        if payload[start + length:start + length + 1] != b"\n":
            raise ValueError(f"Field {line!r} is not newline-terminated")
        fields.append((line.decode("utf-8"), value))
        pos = start + length + 1
    return fields


def write_memfd(payload: bytes) -> int:
    """Return a sealed memfd holding *payload*. The caller closes it."""
    fd = os.memfd_create("logpipe-journal", os.MFD_CLOEXEC | os.MFD_ALLOW_SEALING)
    try:
        view = memoryview(payload)
        while view:
            written = os.write(fd, view)
            view = view[written:]
        fcntl.fcntl(fd, fcntl.F_ADD_SEALS, _MEMFD_SEALS)
    except OSError:
        os.close(fd)
        raise
    return fd


class JournalSocket:
    """Sends records to journald over its unix datagram socket."""

    def __init__(self, path: str = DEFAULT_SOCKET_PATH, sock: socket.socket | None = None):
        self._path = path
        self._sock = sock

    @property
    def path(self) -> str:
        return self._path

    def connect(self):
        """Open the socket and check the journal is listening."""
        if self._sock is not None:
            return
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            sock.connect(self._path)
        except OSError as exc:
            sock.close()
            raise FatalError(f"Journal socket {self._path} is unreachable: {exc}") from exc
        self._sock = sock
        logger.debug("Connected to journal socket %s", self._path)

    def send(self, fields):
        if self._sock is None:
            raise RecoverableError("Journal socket is not connected")
        payload = encode_record(fields)
        try:
            self._sock.send(payload)
        except OSError as exc:
            if exc.errno not in _OVERSIZE_ERRNOS:
                raise RecoverableError(
                    f"Failed to send {len(payload)} byte record to journal: {exc}"
                ) from exc
            self._send_via_memfd(payload)

    def _send_via_memfd(self, payload: bytes):
        logger.debug("Passing %d byte record to journal through a memfd", len(payload))
        try:
            fd = write_memfd(payload)
        except OSError as exc:
            raise RecoverableError(
                f"Failed to stage {len(payload)} byte record for journal: {exc}"
            ) from exc
        try:
            socket.send_fds(self._sock, [b""], [fd])
        except OSError as exc:
            raise RecoverableError(
                f"Failed to send {len(payload)} byte record to journal: {exc}"
            ) from exc
        finally:
            os.close(fd)

    def close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None
