"""Size-triggered rotation of the leading log file through ``logrotate``.

The rotator writes a logrotate configuration next to the leading file and
runs the tool synchronously whenever the file sink crosses its size
threshold::

    /path/to/leading.log {
      rotate <max_files>
      <rotation_options>
      size <max_size>
    }

The ``size`` directive is written last so it overrides any size given in the
passthrough options. logrotate keeps its own state in
``<leading>.logrotate.state``.
"""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass

from logpipe.errors import FatalError, ValidationError

logger = logging.getLogger(__name__)

CONF_SUFFIX = ".logrotate.conf"
STATE_SUFFIX = ".logrotate.state"

DEFAULT_TOOL = "logrotate"
DEFAULT_MAX_FILES = 10


@dataclass
class RotationState:
    leading_path: str
    max_size: int
    bytes_written: int = 0

    @property
    def config_path(self) -> str:
        return self.leading_path + CONF_SUFFIX

    @property
    def state_path(self) -> str:
        return self.leading_path + STATE_SUFFIX

    def exceeded(self) -> bool:
        return self.bytes_written > self.max_size


def render_config(leading_path: str, max_size: int, max_files: int = DEFAULT_MAX_FILES,
                  options: str | None = None) -> str:
    lines = [f"{leading_path} {{", f"  rotate {max_files}"]
    if options:
        for option in options.strip().splitlines():
            if option.strip():
                lines.append(f"  {option.strip()}")
    lines.append(f"  size {max_size}")
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_config(path: str, text: str) -> None:
    """Atomically write *text* to *path* (tmp + os.replace)."""
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(dir=directory)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp, path)
    except Exception:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class SubprocessInvoker:
    """Runs the rotation tool and returns its exit status.

    No timeout is applied: a hung tool stalls the pipeline.
    """

    def invoke(self, args: list[str]) -> int:
        result = subprocess.run(args, stdin=subprocess.DEVNULL, capture_output=True, text=True)
        if result.returncode != 0 and result.stderr:
            logger.error("%s: %s", args[0], result.stderr.strip())
        return result.returncode


def check_tool(tool_path: str, invoker=None) -> None:
    """Raise ValidationError unless ``<tool> --help`` runs successfully."""
    invoker = invoker or SubprocessInvoker()
    try:
        status = invoker.invoke([tool_path, "--help"])
    except OSError as exc:
        raise ValidationError(f"Failed to check {tool_path}: {exc}") from exc
    if status != 0:
        raise ValidationError(f"Failed to check {tool_path}: '--help' exited with {status}")


class Rotator:
    def __init__(self, tool_path: str = DEFAULT_TOOL, max_files: int = DEFAULT_MAX_FILES,
                 options: str | None = None, invoker=None):
        self._tool_path = tool_path
        self._max_files = max_files
        self._options = options
        self._invoker = invoker or SubprocessInvoker()
        self._rotations = 0

    @property
    def rotations(self) -> int:
        return self._rotations

    def command(self, state: RotationState) -> list[str]:
        return [self._tool_path, "--state", state.state_path, state.config_path]

    def write_config(self, state: RotationState) -> str:
        text = render_config(state.leading_path, state.max_size, self._max_files, self._options)
        try:
            write_config(state.config_path, text)
        except OSError as exc:
            raise FatalError(f"Failed to write {state.config_path}: {exc}") from exc
        return state.config_path

    def rotate(self, state: RotationState) -> None:
        """Run the rotation tool and reset the size counter.

        Raises FatalError if the tool cannot be started or exits non-zero.
        """
        args = self.command(state)
        try:
            status = self._invoker.invoke(args)
        except OSError as exc:
            raise FatalError(f"Failed to run {self._tool_path}: {exc}") from exc
        if status != 0:
            raise FatalError(f"{self._tool_path} exited with status {status}")

        self._rotations += 1
        logger.info("Rotated %s after %d bytes", state.leading_path, state.bytes_written)
        state.bytes_written = 0
