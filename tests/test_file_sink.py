"""Tests for the rotating file sink."""

import os

import pytest

from conftest import FakeInvoker
from logpipe.errors import FatalError
from logpipe.file_sink import RotatingFileSink
from logpipe.rotator import RotationState, Rotator


def _sink(tmp_path, max_size=100, invoker=None):
    leading = str(tmp_path / "stdout")
    state = RotationState(leading_path=leading, max_size=max_size)
    invoker = invoker or FakeInvoker()
    return RotatingFileSink(state, Rotator(invoker=invoker)), invoker, leading


class TestOpen:
    def test_creates_leading_file_and_config(self, tmp_path):
        sink, _, leading = _sink(tmp_path)
        sink.open()
        assert os.path.exists(leading)
        assert os.path.exists(leading + ".logrotate.conf")
        assert sink.is_open
        sink.close()
        assert not sink.is_open

    def test_appends_to_existing_file(self, tmp_path):
        sink, _, leading = _sink(tmp_path)
        with open(leading, "wb") as f:
            f.write(b"previous\n")
        sink.open()
        sink.write(b"next\n")
        sink.close()
        with open(leading, "rb") as f:
            assert f.read() == b"previous\nnext\n"

    def test_creates_missing_directory(self, tmp_path):
        state = RotationState(str(tmp_path / "a" / "b" / "stdout"), 100)
        sink = RotatingFileSink(state, Rotator(invoker=FakeInvoker()))
        sink.open()
        sink.close()
        assert os.path.isfile(state.leading_path)

    def test_open_failure_is_fatal(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        state = RotationState(str(blocker / "stdout"), 100)
        sink = RotatingFileSink(state, Rotator(invoker=FakeInvoker()))
        with pytest.raises(FatalError):
            sink.open()

    def test_write_before_open_is_fatal(self, tmp_path):
        sink, _, _ = _sink(tmp_path)
        with pytest.raises(FatalError):
            sink.write(b"x\n")


class TestRotation:
    def test_no_rotation_at_threshold(self, tmp_path):
        sink, invoker, _ = _sink(tmp_path, max_size=10)
        sink.open()
        sink.write(b"123456789\n")  # exactly 10 bytes
        assert invoker.calls == []
        assert sink.bytes_written == 10
        sink.close()

    def test_rotates_when_threshold_exceeded(self, tmp_path):
        sink, invoker, leading = _sink(tmp_path, max_size=10)
        sink.open()
        sink.write(b"123456789\n")
        sink.write(b"a\n")  # 12 > 10
        assert len(invoker.calls) == 1
        assert sink.bytes_written == 0
        sink.write(b"after\n")
        sink.close()

        with open(leading + ".1", "rb") as f:
            assert f.read() == b"123456789\na\n"
        with open(leading, "rb") as f:
            assert f.read() == b"after\n"

    def test_rotation_iff_cumulative_exceeds(self, tmp_path):
        sink, invoker, _ = _sink(tmp_path, max_size=20)
        sink.open()
        written = 0
        rotations = 0
        for size in (5, 7, 8, 1, 19, 2, 20, 21, 3):
            sink.write(b"x" * (size - 1) + b"\n")
            written += size
            if written > 20:
                rotations += 1
                written = 0
            assert len(invoker.calls) == rotations
            assert sink.bytes_written == written
        sink.close()

    def test_rotation_failure_is_fatal(self, tmp_path):
        sink, _, _ = _sink(tmp_path, max_size=10, invoker=FakeInvoker(statuses=[1]))
        sink.open()
        with pytest.raises(FatalError):
            sink.write(b"x" * 20 + b"\n")
        assert not sink.is_open

    def test_descriptor_closed_during_rotation(self, tmp_path):
        seen = []

        class ObservingInvoker(FakeInvoker):
            def invoke(self, args):
                seen.append(sink.is_open)
                return super().invoke(args)

        sink, _, _ = _sink(tmp_path, max_size=1, invoker=ObservingInvoker())
        sink.open()
        sink.write(b"ab\n")
        assert seen == [False]
        assert sink.is_open
        sink.close()
