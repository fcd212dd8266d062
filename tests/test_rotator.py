"""Tests for the logrotate-driven rotator."""

import os
import shutil
import tempfile
import unittest

from conftest import FakeInvoker
from logpipe.errors import FatalError, ValidationError
from logpipe.rotator import (
    RotationState,
    Rotator,
    check_tool,
    render_config,
    write_config,
)


class TestRenderConfig(unittest.TestCase):
    def test_minimal_config(self):
        text = render_config("/var/log/task/stdout", 4096, max_files=5)
        self.assertEqual(text, "/var/log/task/stdout {\n  rotate 5\n  size 4096\n}\n")

    def test_options_inserted_before_size(self):
        text = render_config("/x.log", 8192, max_files=3,
                             options="compress\n  missingok\nsize 1")
        lines = text.splitlines()
        self.assertEqual(lines, [
            "/x.log {",
            "  rotate 3",
            "  compress",
            "  missingok",
            "  size 1",
            "  size 8192",
            "}",
        ])
        # logrotate keeps the last size directive
        self.assertEqual(lines[-2], "  size 8192")


class TestRotationState(unittest.TestCase):
    def test_paths_derived_from_leading_file(self):
        state = RotationState("/tmp/x.log", 100)
        self.assertEqual(state.config_path, "/tmp/x.log.logrotate.conf")
        self.assertEqual(state.state_path, "/tmp/x.log.logrotate.state")

    def test_exceeded_is_strict(self):
        state = RotationState("/tmp/x.log", 100, bytes_written=100)
        self.assertFalse(state.exceeded())
        state.bytes_written = 101
        self.assertTrue(state.exceeded())


class TestRotator(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.leading = os.path.join(self.tmpdir, "stdout")

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_write_config_creates_file(self):
        state = RotationState(self.leading, 4096)
        rotator = Rotator(max_files=2, options="compress", invoker=FakeInvoker())
        path = rotator.write_config(state)
        with open(path) as f:
            self.assertEqual(f.read(), render_config(self.leading, 4096, 2, "compress"))

    def test_rotate_invokes_tool_and_resets_counter(self):
        invoker = FakeInvoker()
        state = RotationState(self.leading, 100, bytes_written=150)
        rotator = Rotator(tool_path="/usr/sbin/logrotate", invoker=invoker)
        rotator.rotate(state)
        self.assertEqual(invoker.calls, [[
            "/usr/sbin/logrotate", "--state", self.leading + ".logrotate.state",
            self.leading + ".logrotate.conf",
        ]])
        self.assertEqual(state.bytes_written, 0)
        self.assertEqual(rotator.rotations, 1)

    def test_nonzero_exit_is_fatal(self):
        state = RotationState(self.leading, 100, bytes_written=150)
        rotator = Rotator(invoker=FakeInvoker(statuses=[1]))
        with self.assertRaises(FatalError):
            rotator.rotate(state)
        self.assertEqual(state.bytes_written, 150)
        self.assertEqual(rotator.rotations, 0)

    def test_missing_tool_is_fatal(self):
        state = RotationState(self.leading, 100, bytes_written=150)
        rotator = Rotator(tool_path=os.path.join(self.tmpdir, "no-such-tool"))
        with self.assertRaises(FatalError):
            rotator.rotate(state)

    @unittest.skipUnless(shutil.which("true") and shutil.which("false"), "needs true/false")
    def test_real_subprocess_exit_status(self):
        state = RotationState(self.leading, 100, bytes_written=150)
        Rotator(tool_path=shutil.which("true")).rotate(state)
        self.assertEqual(state.bytes_written, 0)

        state.bytes_written = 150
        with self.assertRaises(FatalError):
            Rotator(tool_path=shutil.which("false")).rotate(state)


class TestWriteConfig(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_overwrites_atomically(self):
        path = os.path.join(self.tmpdir, "x.conf")
        write_config(path, "old\n")
        write_config(path, "new\n")
        with open(path) as f:
            self.assertEqual(f.read(), "new\n")
        self.assertEqual(os.listdir(self.tmpdir), ["x.conf"])


class TestCheckTool(unittest.TestCase):
    def test_help_success(self):
        invoker = FakeInvoker()
        check_tool("logrotate", invoker)
        self.assertEqual(invoker.calls, [["logrotate", "--help"]])

    def test_help_failure(self):
        with self.assertRaises(ValidationError):
            check_tool("logrotate", FakeInvoker(statuses=[127]))

    def test_missing_executable(self):
        with self.assertRaises(ValidationError):
            check_tool("/nonexistent/logrotate")


if __name__ == "__main__":
    unittest.main()
