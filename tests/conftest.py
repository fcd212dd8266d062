"""Shared pytest fixtures and fakes for the logpipe test suite."""

import os

import pytest

from logpipe.errors import FatalError, RecoverableError
from logpipe.labels import LabelSet


class FakeBackend:
    """Stands in for the journal socket; records every record sent."""

    def __init__(self, fail_on=(), unreachable=False):
        self.records: list[dict] = []
        self.fail_on = set(fail_on)
        self.unreachable = unreachable
        self.connected = False
        self.closed = False
        self._calls = 0

    def connect(self):
        if self.unreachable:
            raise FatalError("journal unreachable")
        self.connected = True

    def send(self, fields):
        self._calls += 1
        if self._calls in self.fail_on:
            raise RecoverableError("backend rejected record")
        self.records.append(dict(fields))

    def close(self):
        self.closed = True


class FakeInvoker:
    """Records rotation tool invocations and simulates a rename-style rotation."""

    def __init__(self, statuses=None, rename=True):
        self.calls: list[list[str]] = []
        self._statuses = list(statuses or [])
        self._rename = rename

    def invoke(self, args):
        self.calls.append(list(args))
        status = self._statuses.pop(0) if self._statuses else 0
        if status == 0 and self._rename and args[1:2] == ["--state"]:
            conf = args[-1]
            leading = conf[: -len(".logrotate.conf")]
            if os.path.exists(leading):
                os.replace(leading, f"{leading}.{len(self.calls)}")
        return status


class ChunkReader:
    """Returns the given chunks one per call, then end-of-stream."""

    def __init__(self, chunks, error=None):
        self._chunks = list(chunks)
        self._error = error
        self.calls = 0

    def __call__(self) -> bytes:
        self.calls += 1
        if self._chunks:
            return self._chunks.pop(0)
        if self._error is not None:
            raise self._error
        return b""


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture()
def service_labels() -> LabelSet:
    return LabelSet.from_pairs([("SERVICE", "web")])
