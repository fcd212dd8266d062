"""Configuration loading from an optional YAML file, env vars, and CLI args.

Precedence, lowest to highest: dataclass defaults, YAML file, environment
variables, command-line flags. The resulting PipelineConfig is immutable and
handed to every component explicitly.
"""

import argparse
import logging
import os
import re
import resource
from dataclasses import dataclass, field, fields

import yaml

from logpipe.errors import ValidationError
from logpipe.journal import DEFAULT_SOCKET_PATH
from logpipe.labels import LabelSet, parse_labels
from logpipe.privileges import lookup_user
from logpipe.rotator import DEFAULT_MAX_FILES, DEFAULT_TOOL, check_tool
from logpipe.splitter import DEFAULT_MAX_LINE_LENGTH

logger = logging.getLogger(__name__)

STRUCTURED = "structured"
FILE = "file"
BOTH = "both"

# journald/logrotate names are accepted as aliases.
DESTINATIONS = {
    STRUCTURED: STRUCTURED,
    FILE: FILE,
    BOTH: BOTH,
    "journald": STRUCTURED,
    "logrotate": FILE,
    "journald+logrotate": BOTH,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

CONFIG_ENV_VAR = "LOGPIPE_CONFIG"

# option name -> environment variable
ENV_VARS = {
    "destination": "LOGPIPE_DESTINATION",
    "labels": "LOGPIPE_LABELS",
    "max_size": "LOGPIPE_MAX_SIZE",
    "max_files": "LOGPIPE_MAX_FILES",
    "rotation_options": "LOGPIPE_ROTATION_OPTIONS",
    "leading_file_path": "LOGPIPE_LEADING_FILE",
    "rotation_tool_path": "LOGPIPE_ROTATION_TOOL",
    "run_as_user": "LOGPIPE_USER",
    "journal_socket": "LOGPIPE_JOURNAL_SOCKET",
    "max_line_length": "LOGPIPE_MAX_LINE_LENGTH",
    "log_level": "LOGPIPE_LOG_LEVEL",
}

_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024 ** 2,
    "MB": 1024 ** 2,
    "G": 1024 ** 3,
    "GB": 1024 ** 3,
}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")


@dataclass(frozen=True)
class PipelineConfig:
    destination: str = STRUCTURED
    labels: LabelSet = field(default_factory=LabelSet)
    max_size: int = 10 * 1024 * 1024  # 10 MB
    max_files: int = DEFAULT_MAX_FILES
    rotation_options: str | None = None
    leading_file_path: str | None = None
    rotation_tool_path: str = DEFAULT_TOOL
    run_as_user: str | None = None
    journal_socket: str = DEFAULT_SOCKET_PATH
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH
    log_level: str = "INFO"

    @property
    def structured_enabled(self) -> bool:
        return self.destination in (STRUCTURED, BOTH)

    @property
    def file_enabled(self) -> bool:
        return self.destination in (FILE, BOTH)


def parse_size(value) -> int:
    """Parse a byte count such as ``4096``, ``"512KB"`` or ``"10 MB"``."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        return value
    match = _SIZE_RE.match(str(value))
    if not match or match.group(2).upper() not in _SIZE_UNITS:
        raise ValidationError(f"Invalid size: {value!r}")
    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2).upper()])


def parse_destination(value: str) -> str:
    try:
        return DESTINATIONS[str(value).strip().lower()]
    except KeyError:
        raise ValidationError(f"Invalid destination type: {value}") from None


def _parse_int(name: str, value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Expected an integer for {name}, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Expected an integer for {name}, got {value!r}") from None


def load_yaml_config(path: str | None) -> dict:
    """Load options from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ValidationError(f"Config file {path} not found") from None
    except yaml.YAMLError as exc:
        raise ValidationError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path} must contain a mapping")
    logger.debug("Loaded YAML config from %s", path)
    return data


def load_env(environ=None) -> dict:
    environ = os.environ if environ is None else environ
    return {name: environ[var] for name, var in ENV_VARS.items() if var in environ}


def build_config(raw: dict) -> PipelineConfig:
    """Convert raw option values (strings, YAML scalars/lists) into a PipelineConfig."""
    known = {f.name for f in fields(PipelineConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ValidationError(f"Unknown option(s): {', '.join(sorted(unknown))}")

    kwargs: dict = {}
    for name, value in raw.items():
        if value is None:
            continue
        if name == "destination":
            kwargs[name] = parse_destination(value)
        elif name == "labels":
            kwargs[name] = value if isinstance(value, LabelSet) else parse_labels(value)
        elif name == "max_size":
            kwargs[name] = parse_size(value)
        elif name in ("max_files", "max_line_length"):
            kwargs[name] = _parse_int(name, value)
        elif name == "log_level":
            kwargs[name] = str(value).upper()
        else:
            kwargs[name] = str(value)
    return PipelineConfig(**kwargs)


def validate_config(cfg: PipelineConfig, invoker=None) -> PipelineConfig:
    """Check every startup constraint. Raises ValidationError on the first violation."""
    if cfg.destination not in (STRUCTURED, FILE, BOTH):
        raise ValidationError(f"Invalid destination type: {cfg.destination}")

    page_size = resource.getpagesize()
    if cfg.max_size < page_size:
        raise ValidationError(f"Expected max_size of at least {page_size} bytes")

    if cfg.max_files < 1:
        raise ValidationError("Expected max_files of at least 1")

    if cfg.max_line_length < 0:
        raise ValidationError("Expected max_line_length >= 0")

    if cfg.log_level not in LOG_LEVELS:
        raise ValidationError(f"Invalid log level: {cfg.log_level}")

    if cfg.file_enabled:
        if not cfg.leading_file_path:
            raise ValidationError("Missing required option leading_file_path")
        if not os.path.isabs(cfg.leading_file_path):
            raise ValidationError("Expected leading_file_path to be an absolute path")
        check_tool(cfg.rotation_tool_path, invoker)

    if cfg.run_as_user:
        lookup_user(cfg.run_as_user)

    return cfg


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logpipe",
        description=(
            "Pipe stdin to journald and/or a rotated log file. Each line is "
            "labeled with --labels before it is written to journald."
        ),
    )
    parser.add_argument("--config", default=None,
                        help="Path to a YAML config file (env: LOGPIPE_CONFIG)")
    parser.add_argument("--destination", "--destination_type", dest="destination",
                        help="structured|file|both (or journald|logrotate|journald+logrotate)")
    parser.add_argument("--labels", "--journald_labels", dest="labels",
                        help='JSON labels, e.g. {"labels": [{"key": "K", "value": "v"}]}')
    parser.add_argument("--max-size", "--logrotate_max_size", dest="max_size",
                        help="Rotate the leading file past this many bytes (default: 10MB)")
    parser.add_argument("--max-files", dest="max_files",
                        help="Number of rotated files to keep (default: 10)")
    parser.add_argument("--rotation-options", "--logrotate_options", dest="rotation_options",
                        help="Extra directives inserted into the logrotate config")
    parser.add_argument("--leading-file", "--logrotate_filename", dest="leading_file_path",
                        help="Absolute path to the leading log file")
    parser.add_argument("--rotation-tool", "--logrotate_path", dest="rotation_tool_path",
                        help="logrotate executable to use (default: logrotate)")
    parser.add_argument("--user", dest="run_as_user",
                        help="User to run as")
    parser.add_argument("--journal-socket", dest="journal_socket",
                        help=f"journald socket (default: {DEFAULT_SOCKET_PATH})")
    parser.add_argument("--max-line-length", dest="max_line_length",
                        help="Split unterminated lines at this many bytes, 0 for no limit")
    parser.add_argument("--log-level", dest="log_level",
                        help="Diagnostic log level (default: INFO)")
    return parser


def load_config(argv: list[str] | None = None, environ=None, invoker=None) -> PipelineConfig:
    """Build and validate a PipelineConfig from YAML <- env vars <- CLI args."""
    environ = os.environ if environ is None else environ
    args = build_cli_parser().parse_args(argv)

    raw = load_yaml_config(args.config or environ.get(CONFIG_ENV_VAR))
    raw.update(load_env(environ))
    for name in ENV_VARS:
        value = getattr(args, name)
        if value is not None:
            raw[name] = value

    return validate_config(build_config(raw), invoker)
